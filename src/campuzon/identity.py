"""Current-user identity, as seen by the sync layer.

The sync layer only reads identity. ``SessionIdentity`` is the concrete
provider used by ``Storefront``: the host's auth flow hands it a session
(user + access token) after sign-in and clears it on sign-out.
``SessionIdentity.from_token`` builds the session from a signed access
token, verifying it against the auth server's public key.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from campuzon.errors import AuthenticationRequired
from campuzon.models import User

logger = logging.getLogger(__name__)

SESSION_ALGORITHMS = ["EdDSA"]


def normalize_public_key(raw: str) -> str:
    """Accept a bare base64 key string or full PEM and return valid PEM."""
    stripped = raw.strip()
    if stripped.startswith("-----"):
        return stripped
    return f"-----BEGIN PUBLIC KEY-----\n{stripped}\n-----END PUBLIC KEY-----"


@runtime_checkable
class IdentityProvider(Protocol):
    @property
    def current_user(self) -> User | None: ...

    @property
    def is_authenticated(self) -> bool: ...

    @property
    def access_token(self) -> str | None: ...


class SessionIdentity:
    """Mutable holder for the signed-in session."""

    def __init__(self, user: User | None = None, access_token: str | None = None) -> None:
        self._user = user
        self._access_token = access_token

    @property
    def current_user(self) -> User | None:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    @property
    def access_token(self) -> str | None:
        return self._access_token

    def sign_in(self, user: User, access_token: str | None = None) -> None:
        self._user = user
        self._access_token = access_token

    def sign_out(self) -> None:
        self._user = None
        self._access_token = None

    @classmethod
    def from_token(cls, token: str, public_key: str) -> SessionIdentity:
        """Verify a signed access token and build a session from its claims.

        Raises:
            AuthenticationRequired: On an invalid, expired or tampered token.
        """
        import jwt
        from cryptography.hazmat.primitives.serialization import load_pem_public_key

        try:
            key = load_pem_public_key(normalize_public_key(public_key).encode())
        except (ValueError, TypeError) as e:
            raise AuthenticationRequired(f"Invalid session public key: {e}") from e

        try:
            claims: dict[str, Any] = jwt.decode(
                token, key, algorithms=SESSION_ALGORITHMS,
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationRequired("Session has expired. Please sign in again.") from e
        except jwt.InvalidTokenError as e:
            logger.warning("Rejected session token: %s", e)
            raise AuthenticationRequired(f"Invalid session: {e}") from e

        user = User(
            id=str(claims["sub"]),
            display_name=str(claims.get("name", "")),
            email=str(claims.get("email", "")),
            store_id=claims.get("store_id"),
        )
        return cls(user=user, access_token=token)


def require_user(identity: IdentityProvider) -> User:
    """Return the current user or raise ``AuthenticationRequired``."""
    user = identity.current_user
    if user is None or not identity.is_authenticated:
        raise AuthenticationRequired("Please sign in to continue.")
    return user
