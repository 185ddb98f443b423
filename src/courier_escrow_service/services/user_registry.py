"""Users, their Ed25519 keys, and signed login verification."""

from __future__ import annotations

import base64
import json
import sqlite3
import time
from typing import TYPE_CHECKING, Any, cast

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from joserfc import jws as jws_module
from joserfc.errors import BadSignatureError
from joserfc.jwk import OKPKey

from courier_escrow_service.core.exceptions import (
    StateConflict,
    Unauthorized,
    ValidationFailed,
)
from courier_escrow_service.logging import get_logger
from courier_escrow_service.services.database import new_id, now_iso
from courier_escrow_service.services.lifecycle import ROLE_ADMIN, SELF_SERVICE_ROLES

if TYPE_CHECKING:
    from courier_escrow_service.services.database import Database

PUBLIC_KEY_PREFIX = "ed25519:"
PUBLIC_KEY_BYTES = 32
LOGIN_ACTION = "login"

# Login tokens older than this (by their iat claim) are refused.
LOGIN_TOKEN_MAX_AGE_SECONDS = 300

_MAX_DISPLAY_NAME_LENGTH = 100


def validate_public_key(public_key: object) -> str:
    """
    Validate Ed25519 public key format and content.

    Expected format: "ed25519:<base64-encoded-32-bytes>"
    """
    if not isinstance(public_key, str) or not public_key.startswith(PUBLIC_KEY_PREFIX):
        raise ValidationFailed(
            "INVALID_PUBLIC_KEY",
            f"Public key must start with '{PUBLIC_KEY_PREFIX}'",
            400,
        )

    try:
        key_bytes = base64.b64decode(public_key[len(PUBLIC_KEY_PREFIX) :], validate=True)
    except Exception as exc:
        raise ValidationFailed(
            "INVALID_PUBLIC_KEY",
            "Public key contains invalid base64",
            400,
        ) from exc

    if len(key_bytes) != PUBLIC_KEY_BYTES:
        raise ValidationFailed(
            "INVALID_PUBLIC_KEY",
            f"Public key must be exactly {PUBLIC_KEY_BYTES} bytes",
            400,
        )

    # Degenerate identity point
    if key_bytes == b"\x00" * PUBLIC_KEY_BYTES:
        raise ValidationFailed("INVALID_PUBLIC_KEY", "All-zero public key is not allowed", 400)

    try:
        Ed25519PublicKey.from_public_bytes(key_bytes)
    except Exception as exc:
        raise ValidationFailed(
            "INVALID_PUBLIC_KEY",
            "Not a valid Ed25519 public key",
            400,
        ) from exc
    return public_key


def _decode_segment(segment: str) -> Any:
    padding = 4 - len(segment) % 4
    if padding != 4:
        segment += "=" * padding
    return json.loads(base64.urlsafe_b64decode(segment))


def _unauthorized(message: str) -> Unauthorized:
    return Unauthorized("UNAUTHORIZED", message, 401)


class UserRegistry:
    """
    Registered users and their keys.

    Clients and drivers register themselves. Admins exist only when their
    key is listed in configuration and are provisioned at startup.
    """

    def __init__(self, database: Database) -> None:
        self._database = database
        self._logger = get_logger(__name__)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> dict[str, Any]:
        return {
            "user_id": row["user_id"],
            "display_name": row["display_name"],
            "role": row["role"],
            "public_key": row["public_key"],
            "registered_at": row["registered_at"],
        }

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        row = self._database.fetch_one(
            "SELECT user_id, display_name, role, public_key, registered_at "
            "FROM users WHERE user_id = ?",
            (user_id,),
        )
        return self._row_to_user(row) if row is not None else None

    def _insert(self, display_name: str, role: str, public_key: str) -> dict[str, Any]:
        user_id = new_id("usr")
        try:
            with self._database.atomic() as db:
                db.execute(
                    "INSERT INTO users (user_id, display_name, role, public_key, registered_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (user_id, display_name, role, public_key, now_iso()),
                )
        except sqlite3.IntegrityError as exc:
            raise StateConflict(
                "PUBLIC_KEY_EXISTS",
                "This public key is already registered",
                409,
            ) from exc
        self._logger.info("User registered", extra={"user_id": user_id, "role": role})
        return cast("dict[str, Any]", self.get_user(user_id))

    def register_user(
        self,
        display_name: object,
        role: object,
        public_key: object,
    ) -> dict[str, Any]:
        """
        Register a client or driver.

        Raises:
            ValidationFailed: INVALID_NAME, INVALID_ROLE, INVALID_PUBLIC_KEY
            StateConflict: PUBLIC_KEY_EXISTS
        """
        if not isinstance(display_name, str) or not display_name.strip():
            raise ValidationFailed(
                "INVALID_NAME", "Name cannot be empty or whitespace-only", 400
            )
        if len(display_name) > _MAX_DISPLAY_NAME_LENGTH:
            raise ValidationFailed(
                "INVALID_NAME",
                f"Name must be at most {_MAX_DISPLAY_NAME_LENGTH} characters",
                400,
            )
        if not isinstance(role, str) or role not in SELF_SERVICE_ROLES:
            raise ValidationFailed(
                "INVALID_ROLE",
                f"role must be one of: {', '.join(sorted(SELF_SERVICE_ROLES))}",
                400,
            )
        key = validate_public_key(public_key)
        return self._insert(display_name.strip(), role, key)

    def ensure_admin(self, public_key: str) -> dict[str, Any]:
        """Provision an admin for a configured key. Idempotent across restarts."""
        key = validate_public_key(public_key)
        row = self._database.fetch_one(
            "SELECT user_id, display_name, role, public_key, registered_at "
            "FROM users WHERE public_key = ?",
            (key,),
        )
        if row is not None:
            user = self._row_to_user(row)
            if user["role"] != ROLE_ADMIN:
                raise StateConflict(
                    "PUBLIC_KEY_EXISTS",
                    "Configured admin key is registered to a non-admin user",
                    409,
                    {"user_id": user["user_id"]},
                )
            return user
        return self._insert("admin", ROLE_ADMIN, key)

    def verify_login(self, token: object) -> dict[str, Any]:
        """
        Verify a login JWS and return the signing user.

        The token is a compact JWS signed with EdDSA, whose header kid is the
        user id and whose payload is {"action": "login", "user_id": <kid>,
        "iat": <unix seconds>}.

        Raises:
            Unauthorized: UNAUTHORIZED for any malformed, unknown, stale or
                badly signed token.
        """
        if not isinstance(token, str) or not token:
            raise _unauthorized("Missing login token")

        parts = token.split(".")
        if len(parts) != 3:
            raise _unauthorized("Token is not a valid JWS compact serialization")
        try:
            header = _decode_segment(parts[0])
        except Exception as exc:
            raise _unauthorized("Token is not a valid JWS compact serialization") from exc
        if not isinstance(header, dict) or header.get("alg") != "EdDSA":
            raise _unauthorized("Only EdDSA algorithm is supported")
        kid = header.get("kid")
        if not kid or not isinstance(kid, str):
            raise _unauthorized("JWS header must contain a 'kid' field with the user_id")

        user = self.get_user(kid)
        if user is None:
            raise _unauthorized("Unknown user")

        raw_public = base64.b64decode(user["public_key"][len(PUBLIC_KEY_PREFIX) :])
        public_jwk = OKPKey.import_key(
            {
                "kty": "OKP",
                "crv": "Ed25519",
                "x": base64.urlsafe_b64encode(raw_public).rstrip(b"=").decode(),
            }
        )
        try:
            obj = jws_module.deserialize_compact(token, public_jwk, algorithms=["EdDSA"])
        except BadSignatureError as exc:
            raise _unauthorized("Signature mismatch") from exc
        except Exception as exc:
            raise _unauthorized("Token verification failed") from exc

        try:
            payload = json.loads(obj.payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise _unauthorized("JWS payload is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise _unauthorized("JWS payload must be a JSON object")
        if payload.get("action") != LOGIN_ACTION:
            raise _unauthorized(f"Expected action '{LOGIN_ACTION}'")
        if payload.get("user_id") != kid:
            raise _unauthorized("Payload user_id does not match signer")

        issued_at = payload.get("iat")
        if isinstance(issued_at, bool) or not isinstance(issued_at, (int, float)):
            raise _unauthorized("Login token must carry a numeric iat")
        age = time.time() - issued_at
        if age > LOGIN_TOKEN_MAX_AGE_SECONDS or age < -LOGIN_TOKEN_MAX_AGE_SECONDS:
            raise _unauthorized("Login token is stale")

        return user
