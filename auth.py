"""Bearer token verification against Firebase Authentication."""

import logging
from typing import Optional, Protocol

import firebase_admin
import google.auth.exceptions
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from firebase_admin import exceptions as firebase_exceptions

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Raised when a bearer token cannot be verified."""


class TokenVerifier(Protocol):
    def verify_token(self, token: str) -> dict: ...


class FirebaseTokenVerifier:
    """Verify ID tokens with the Firebase Admin SDK.

    The SDK app is initialized on first use, from a service account file when
    ``credentials_path`` is set and from application default credentials
    otherwise.
    """

    APP_NAME = "fittrack"

    def __init__(
        self,
        credentials_path: str | None = None,
        project_id: str | None = None,
    ) -> None:
        self.credentials_path = credentials_path
        self.project_id = project_id
        self._app: firebase_admin.App | None = None

    def _get_app(self) -> firebase_admin.App:
        if self._app is None:
            try:
                self._app = firebase_admin.get_app(self.APP_NAME)
            except ValueError:
                if self.credentials_path:
                    cred = credentials.Certificate(self.credentials_path)
                else:
                    cred = credentials.ApplicationDefault()
                options = {"projectId": self.project_id} if self.project_id else None
                self._app = firebase_admin.initialize_app(
                    cred, options, name=self.APP_NAME
                )
        return self._app

    def verify_token(self, token: str) -> dict:
        try:
            return firebase_auth.verify_id_token(token, app=self._get_app())
        except (
            ValueError,
            firebase_exceptions.FirebaseError,
            google.auth.exceptions.GoogleAuthError,
        ) as e:
            logger.info("token verification failed: %s", e)
            raise AuthError(str(e)) from e


def bearer_token(authorization: str | None) -> Optional[str]:
    """Return the token part of an ``Authorization: Bearer`` header."""
    if not authorization:
        return None
    header = authorization.strip()
    if not header.startswith("Bearer "):
        return None
    token = header[len("Bearer "):].strip()
    return token or None


def extract_user_id(
    authorization: str | None, verifier: TokenVerifier
) -> Optional[str]:
    """Resolve the caller's uid, or ``None`` when no token was sent.

    Raises :class:`AuthError` when a token is present but invalid.
    """
    token = bearer_token(authorization)
    if token is None:
        return None
    claims = verifier.verify_token(token)
    return claims.get("uid") or claims.get("user_id") or None
