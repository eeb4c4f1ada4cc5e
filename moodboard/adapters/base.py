"""Collaborator contracts consumed by :class:`~moodboard.data.store.AppStateStore`."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

Document = dict[str, Any]
Unsubscribe = Callable[[], None]


# ----------------------------------------------------------------------
# Field operators understood by ``set``/``add``/``update``
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class ArrayUnion:
    """Append ``values`` missing from an array field."""

    values: tuple[Any, ...]

    def __init__(self, *values: Any) -> None:
        object.__setattr__(self, "values", values)


@dataclass(frozen=True)
class ArrayRemove:
    """Drop every occurrence of ``values`` from an array field."""

    values: tuple[Any, ...]

    def __init__(self, *values: Any) -> None:
        object.__setattr__(self, "values", values)


@dataclass(frozen=True)
class Increment:
    amount: int = 1


class _ServerTimestamp:
    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class SessionUser:
    """Identity of the signed-in account as reported by the provider."""

    uid: str
    email: str | None = None
    id_token: str | None = None


class DocumentStore(ABC):
    """Abstract document database holding the app's collections."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document | None:
        """Return the document (with its ``id``) or ``None``."""

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: Document) -> None:
        """Create or replace a document."""

    @abstractmethod
    async def add(self, collection: str, data: Document) -> str:
        """Create a document with a generated id and return the id."""

    @abstractmethod
    async def update(self, collection: str, doc_id: str, updates: Document) -> None:
        """Apply field updates; raise ``NotFoundError`` if the document is missing."""

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is a no-op."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        where: Sequence[tuple[str, Any]] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        start_at: Any = None,
        end_at: Any = None,
    ) -> list[Document]:
        """Return documents whose fields equal every ``where`` pair."""

    @abstractmethod
    async def run_transaction(
        self,
        collection: str,
        doc_id: str,
        fn: Callable[[Document], Document],
    ) -> Document:
        """Atomically read-modify-write one document.

        ``fn`` receives the current data and returns the updates to apply.
        Concurrent modification between read and write is retried; once
        retries are exhausted ``ConflictError`` is raised.
        """

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        callback: Callable[[list[Document]], None],
        order_by: str | None = None,
        descending: bool = False,
    ) -> Unsubscribe:
        """Push the full ordered result set now and after every change."""

    @abstractmethod
    async def delete_where(self, collection: str, field: str, value: Any) -> int:
        """Delete every document whose ``field`` equals ``value`` in one batch."""


SessionCallback = Callable[[SessionUser | None], Awaitable[None]]


class IdentityProvider(ABC):
    """Abstract external authentication service.

    Session bookkeeping is shared by all providers: subclasses call
    :meth:`_emit` whenever the signed-in account changes and every observer
    is awaited in registration order.
    """

    def __init__(self) -> None:
        self.current_session: SessionUser | None = None
        self._observers: list[SessionCallback] = []

    @abstractmethod
    async def create_account(self, email: str, password: str) -> SessionUser:
        """Register a new account and sign it in."""

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> SessionUser:
        """Start a session for an existing account."""

    @abstractmethod
    async def sign_out(self) -> None:
        """End the current session."""

    @abstractmethod
    async def delete_current_account(self) -> None:
        """Delete the signed-in account."""

    async def observe_session(self, callback: SessionCallback) -> Unsubscribe:
        """Invoke ``callback`` with the current session and on every change."""
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        await callback(self.current_session)
        return unsubscribe

    async def _emit(self, session: SessionUser | None) -> None:
        self.current_session = session
        for callback in list(self._observers):
            await callback(session)
