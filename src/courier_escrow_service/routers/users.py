"""Registration and login endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from courier_escrow_service.core.exceptions import ValidationFailed
from courier_escrow_service.core.state import get_app_state
from courier_escrow_service.routers.validation import read_json_body
from courier_escrow_service.schemas import SessionResponse, UserResponse

router = APIRouter()


@router.post("/users", status_code=201)
async def register_user(request: Request) -> JSONResponse:
    """Register a client or driver with an Ed25519 public key."""
    data = await read_json_body(request)

    state = get_app_state()
    if state.user_registry is None:
        msg = "UserRegistry not initialized"
        raise RuntimeError(msg)

    user = state.user_registry.register_user(
        data.get("display_name"),
        data.get("role"),
        data.get("public_key"),
    )
    return JSONResponse(status_code=201, content=UserResponse(**user).model_dump(mode="json"))


@router.post("/sessions", status_code=201)
async def create_session(request: Request) -> JSONResponse:
    """Exchange a signed login token for a session token."""
    data = await read_json_body(request)
    if "token" not in data:
        raise ValidationFailed("MISSING_FIELD", "Missing required field: token", 400)

    state = get_app_state()
    if state.session_manager is None:
        msg = "SessionManager not initialized"
        raise RuntimeError(msg)

    session = await state.session_manager.login(data["token"])
    return JSONResponse(
        status_code=201,
        content=SessionResponse(**session).model_dump(mode="json"),
    )
