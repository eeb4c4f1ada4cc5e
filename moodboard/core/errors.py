"""Error taxonomy shared by the store and its collaborators."""

from __future__ import annotations


AUTH_ERROR_MESSAGES: dict[str, str] = {
    "invalid-credential": "Invalid email or password",
    "user-not-found": "No account found with this email",
    "wrong-password": "Incorrect password",
    "invalid-email": "Invalid email address",
    "network-request-failed": "Network error. Please check your connection",
    "email-already-in-use": "An account already exists with this email",
    "weak-password": "Password should be at least 6 characters",
}

DEFAULT_AUTH_MESSAGE = "Authentication failed"


class MoodboardError(Exception):
    """Base class for all errors raised by the package."""


class AuthError(MoodboardError):
    """The identity provider rejected a request.

    ``code`` is one of the keys of :data:`AUTH_ERROR_MESSAGES` (or an
    unrecognised provider code) and ``message`` is the text shown to users.
    """

    def __init__(self, code: str, detail: str | None = None) -> None:
        self.code = code
        self.detail = detail
        self.message = auth_error_message(code)
        super().__init__(self.message)


class NotFoundError(MoodboardError):
    """A referenced document no longer exists."""

    def __init__(self, collection: str, doc_id: str) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} not found")


class ConflictError(MoodboardError):
    """A transaction kept colliding with concurrent writes."""


class RemoteError(MoodboardError):
    """Any other storage or network failure."""


class PermissionDenied(MoodboardError):
    """The acting user lacks the role required for an operation."""


def auth_error_message(code: str) -> str:
    return AUTH_ERROR_MESSAGES.get(code, DEFAULT_AUTH_MESSAGE)
