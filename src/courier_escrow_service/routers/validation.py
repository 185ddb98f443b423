"""Shared request validation and authentication helpers for routers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from courier_escrow_service.core.exceptions import Forbidden, Unauthorized, ValidationFailed
from courier_escrow_service.core.state import get_app_state
from courier_escrow_service.services.lifecycle import ROLE_ADMIN

if TYPE_CHECKING:
    from fastapi import Request

    from courier_escrow_service.services.actor import Actor


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ValidationFailed on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationFailed(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
        ) from exc

    if not isinstance(data, dict):
        raise ValidationFailed(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
        )

    return data


async def read_json_body(request: Request) -> dict[str, Any]:
    """Parse the request body, treating an empty body as {}."""
    body = await request.body()
    return {} if body == b"" else parse_json_body(body)


def extract_bearer_token(authorization: str | None) -> str:
    """Extract the session token from an Authorization header."""
    if authorization is None:
        raise Unauthorized("UNAUTHORIZED", "Missing Authorization header", 401)

    if not authorization.startswith("Bearer "):
        raise Unauthorized(
            "UNAUTHORIZED",
            "Authorization header must use Bearer scheme",
            401,
        )

    token = authorization[len("Bearer ") :].strip()
    if not token:
        raise Unauthorized("UNAUTHORIZED", "Bearer token must not be empty", 401)

    return token


def authenticate(request: Request) -> Actor:
    """Resolve the calling user from the request's session token."""
    token = extract_bearer_token(request.headers.get("authorization"))
    state = get_app_state()
    if state.session_manager is None:
        msg = "SessionManager not initialized"
        raise RuntimeError(msg)
    return state.session_manager.authenticate(token)


def require_admin(actor: Actor) -> None:
    if actor.role != ROLE_ADMIN:
        raise Forbidden("FORBIDDEN", "Admin access required", 403)
