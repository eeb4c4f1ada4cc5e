"""Test configuration for ensuring package imports and shared fixtures."""

import asyncio
import datetime
import os
import random
import sys

import pytest

# Add the repository root (the directory containing this file) to ``sys.path``
# if it is not already present.  This mirrors the behaviour of running the
# tests via ``python -m pytest`` where the working directory is automatically on
# the import path.
ROOT_DIR = os.path.abspath(os.path.dirname(__file__))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from moodboard.adapters.base import IdentityProvider, SessionUser  # noqa: E402
from moodboard.core.errors import AuthError  # noqa: E402
from moodboard.core.storage import JSONDocumentStore  # noqa: E402
from moodboard.data.store import AppStateStore  # noqa: E402

IST = datetime.timezone(datetime.timedelta(hours=5, minutes=30))


class FakeIdentity(IdentityProvider):
    """In-memory identity provider with email/password accounts."""

    def __init__(self) -> None:
        super().__init__()
        self.accounts: dict[str, tuple[str, str]] = {}
        self.deleted: list[str] = []

    def register(self, email: str, password: str, uid: str) -> None:
        self.accounts[email] = (password, uid)

    async def create_account(self, email: str, password: str) -> SessionUser:
        if email in self.accounts:
            raise AuthError("email-already-in-use")
        uid = f"uid-{len(self.accounts) + 1}"
        self.accounts[email] = (password, uid)
        session = SessionUser(uid=uid, email=email)
        await self._emit(session)
        return session

    async def sign_in(self, email: str, password: str) -> SessionUser:
        if email not in self.accounts:
            raise AuthError("user-not-found")
        expected, uid = self.accounts[email]
        if password != expected:
            raise AuthError("wrong-password")
        session = SessionUser(uid=uid, email=email)
        await self._emit(session)
        return session

    async def sign_out(self) -> None:
        await self._emit(None)

    async def delete_current_account(self) -> None:
        session = self.current_session
        if session is None:
            return
        self.accounts.pop(session.email, None)
        self.deleted.append(session.uid)
        await self._emit(None)


class FixedClock:
    """Callable clock the tests can move forward."""

    def __init__(self, now: datetime.datetime) -> None:
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + datetime.timedelta(**delta)


def seed_user(documents: JSONDocumentStore, uid: str, username: str, **fields) -> None:
    doc = {"username": username, "streak": 0, "badges": ["special_founding"], "joinedCircles": []}
    doc.update(fields)
    asyncio.run(documents.set("users", uid, doc))


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime.datetime(2024, 3, 10, 12, 0, tzinfo=IST))


@pytest.fixture
def documents() -> JSONDocumentStore:
    return JSONDocumentStore()


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def store(documents, identity, clock) -> AppStateStore:
    return AppStateStore(documents, identity, clock=clock, rng=random.Random(7))


@pytest.fixture
def alice(store, documents, identity) -> AppStateStore:
    """A store signed in as ``alice`` with ``bob`` and ``carol`` also registered."""
    seed_user(documents, "alice", "Alice")
    seed_user(documents, "bob", "Bob")
    seed_user(documents, "carol", "Carol")
    identity.register("alice@example.com", "secret", uid="alice")

    async def sign_in() -> None:
        await store.start()
        await store.login("alice@example.com", "secret")

    asyncio.run(sign_in())
    return store
