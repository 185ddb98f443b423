"""Server-issued session tokens."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from joserfc import jwt
from joserfc.errors import JoseError
from joserfc.jwk import OctKey

from courier_escrow_service.core.exceptions import Unauthorized
from courier_escrow_service.logging import get_logger
from courier_escrow_service.services.actor import Actor

if TYPE_CHECKING:
    from courier_escrow_service.services.user_registry import UserRegistry

SESSION_ALGORITHM = "HS256"
MIN_SECRET_LENGTH = 32


class SessionManager:
    """
    Issues and checks HS256 session tokens.

    The token names the user (sub); authenticate() always re-reads the
    user's role from the registry, so a role claim in the token or in a
    request body is never trusted.
    """

    def __init__(self, user_registry: UserRegistry, secret: str, ttl_seconds: int) -> None:
        if len(secret) < MIN_SECRET_LENGTH:
            msg = f"Session secret must be at least {MIN_SECRET_LENGTH} characters"
            raise ValueError(msg)
        self._user_registry = user_registry
        self._key = OctKey.import_key(secret)
        self._ttl_seconds = ttl_seconds
        self._claims_registry = jwt.JWTClaimsRegistry(
            sub={"essential": True},
            exp={"essential": True},
        )
        self._logger = get_logger(__name__)

    async def login(self, login_token: object) -> dict[str, Any]:
        """Exchange a signed login JWS for a session token."""
        user = self._user_registry.verify_login(login_token)
        issued_at = int(time.time())
        expires_at = issued_at + self._ttl_seconds
        token = jwt.encode(
            {"alg": SESSION_ALGORITHM},
            {
                "sub": user["user_id"],
                "role": user["role"],
                "iat": issued_at,
                "exp": expires_at,
            },
            self._key,
        )
        self._logger.info("Session issued", extra={"user_id": user["user_id"]})
        return {
            "session_token": token,
            "token_type": "Bearer",
            "expires_at": expires_at,
            "user": user,
        }

    def authenticate(self, session_token: str | None) -> Actor:
        """
        Resolve a bearer session token to the acting user.

        Raises:
            Unauthorized: UNAUTHORIZED if the token is missing, malformed,
                badly signed, expired, or names a user that no longer exists.
        """
        if not session_token:
            raise Unauthorized("UNAUTHORIZED", "Missing session token", 401)
        try:
            decoded = jwt.decode(session_token, self._key, algorithms=[SESSION_ALGORITHM])
            self._claims_registry.validate(decoded.claims)
        except (JoseError, ValueError) as exc:
            raise Unauthorized("UNAUTHORIZED", "Invalid or expired session token", 401) from exc

        user_id = decoded.claims.get("sub")
        user = self._user_registry.get_user(user_id) if isinstance(user_id, str) else None
        if user is None:
            raise Unauthorized("UNAUTHORIZED", "Session user no longer exists", 401)
        return Actor(user_id=user["user_id"], role=user["role"])
