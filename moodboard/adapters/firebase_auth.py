"""Identity provider backed by the Firebase Auth REST API.

Only the email/password flows used by the app are supported. It uses
:mod:`httpx` so the whole provider stays asynchronous and can be exercised
in tests through ``httpx.MockTransport``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..core.errors import AuthError
from .base import IdentityProvider, SessionUser

log = logging.getLogger(__name__)

# Firebase REST error messages -> provider independent codes
FIREBASE_ERROR_CODES: dict[str, str] = {
    "INVALID_LOGIN_CREDENTIALS": "invalid-credential",
    "EMAIL_NOT_FOUND": "user-not-found",
    "INVALID_PASSWORD": "wrong-password",
    "INVALID_EMAIL": "invalid-email",
    "EMAIL_EXISTS": "email-already-in-use",
    "WEAK_PASSWORD": "weak-password",
}


class FirebaseAuthProvider(IdentityProvider):
    """Provider that talks directly to ``identitytoolkit.googleapis.com``."""

    api_base = "https://identitytoolkit.googleapis.com/v1"

    def __init__(self, api_key: str, client: httpx.AsyncClient | None = None) -> None:
        """Store the project ``api_key`` and optional HTTP ``client``."""
        super().__init__()
        self.api_key = api_key
        self.client = client or httpx.AsyncClient()

    # ------------------------------------------------------------------
    async def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.api_base}/accounts:{method}"
        try:
            response = await self.client.post(url, params={"key": self.api_key}, json=payload)
        except httpx.TransportError as exc:
            log.warning("Auth request %s failed: %s", method, exc)
            raise AuthError("network-request-failed", str(exc)) from exc
        if response.status_code >= 400:
            raise _auth_error(response)
        return response.json()

    async def _start_session(self, method: str, email: str, password: str) -> SessionUser:
        data = await self._call(
            method,
            {"email": email, "password": password, "returnSecureToken": True},
        )
        session = SessionUser(
            uid=str(data["localId"]),
            email=data.get("email", email),
            id_token=data.get("idToken"),
        )
        await self._emit(session)
        return session

    async def create_account(self, email: str, password: str) -> SessionUser:
        """Register ``email`` and sign the new account in."""
        return await self._start_session("signUp", email, password)

    async def sign_in(self, email: str, password: str) -> SessionUser:
        """Sign in with email and password.

        Raises
        ------
        AuthError
            With a code from :data:`FIREBASE_ERROR_CODES`, or
            ``network-request-failed`` when the request never completed.

        """
        return await self._start_session("signInWithPassword", email, password)

    async def sign_out(self) -> None:
        await self._emit(None)

    async def delete_current_account(self) -> None:
        session = self.current_session
        if session is None:
            return
        await self._call("delete", {"idToken": session.id_token})
        await self._emit(None)

    async def close(self) -> None:
        """Close the underlying :class:`httpx.AsyncClient`."""
        await self.client.aclose()


def _auth_error(response: httpx.Response) -> AuthError:
    try:
        raw = response.json().get("error", {}).get("message", "")
    except ValueError:
        raw = ""
    # messages look like "WEAK_PASSWORD : Password should be at least 6 characters"
    key = raw.split(":", 1)[0].strip()
    code = FIREBASE_ERROR_CODES.get(key, key.lower() or f"http-{response.status_code}")
    return AuthError(code, raw or None)
