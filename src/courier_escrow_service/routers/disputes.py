"""Dispute endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from courier_escrow_service.core.exceptions import ValidationFailed
from courier_escrow_service.core.state import AppState, get_app_state
from courier_escrow_service.routers.validation import authenticate, read_json_body
from courier_escrow_service.schemas import (
    DisputeListResponse,
    DisputeResolutionResponse,
    DisputeResponse,
)
from courier_escrow_service.services.dispute_resolver import DisputeResolver

router = APIRouter()


def _resolver(state: AppState) -> DisputeResolver:
    if state.dispute_resolver is None:
        msg = "DisputeResolver not initialized"
        raise RuntimeError(msg)
    return state.dispute_resolver


def _require_fields(data: dict[str, object], *fields: str) -> None:
    for name in fields:
        if name not in data or data[name] is None:
            raise ValidationFailed("MISSING_FIELD", f"Missing required field: {name}", 400)


# ---------------------------------------------------------------------------
# POST /disputes, GET /disputes (MUST be before GET /disputes/{dispute_id})
# ---------------------------------------------------------------------------


@router.post("/disputes", status_code=201)
async def open_dispute(request: Request) -> JSONResponse:
    """Open a dispute on a job: {"job_id", "reason", "description"}."""
    actor = authenticate(request)
    data = await read_json_body(request)
    _require_fields(data, "job_id", "reason", "description")
    if not isinstance(data["job_id"], str):
        raise ValidationFailed("INVALID_FIELD_TYPE", "job_id must be a string", 400)

    dispute = await _resolver(get_app_state()).open_dispute(
        data["job_id"], actor, data["reason"], data["description"]
    )
    return JSONResponse(
        status_code=201,
        content=DisputeResponse(**dispute).model_dump(mode="json"),
    )


@router.get("/disputes")
async def list_disputes(request: Request) -> JSONResponse:
    actor = authenticate(request)
    disputes = await _resolver(get_app_state()).list_disputes(
        actor,
        status=request.query_params.get("status"),
        job_id=request.query_params.get("job_id"),
    )
    return JSONResponse(
        content=DisputeListResponse.model_validate({"disputes": disputes}).model_dump(
            mode="json"
        )
    )


@router.get("/disputes/{dispute_id}")
async def get_dispute(dispute_id: str, request: Request) -> JSONResponse:
    actor = authenticate(request)
    dispute = await _resolver(get_app_state()).get_dispute(dispute_id, actor)
    return JSONResponse(content=DisputeResponse(**dispute).model_dump(mode="json"))


@router.post("/disputes/{dispute_id}/review")
async def take_under_review(dispute_id: str, request: Request) -> JSONResponse:
    """Admin picks up an open dispute."""
    actor = authenticate(request)
    dispute = await _resolver(get_app_state()).take_under_review(dispute_id, actor)
    return JSONResponse(content=DisputeResponse(**dispute).model_dump(mode="json"))


@router.post("/disputes/{dispute_id}/resolve")
async def resolve_dispute(dispute_id: str, request: Request) -> JSONResponse:
    """Admin settles a dispute: {"resolution", "admin_notes"}."""
    actor = authenticate(request)
    data = await read_json_body(request)
    _require_fields(data, "resolution")

    result = await _resolver(get_app_state()).resolve(
        dispute_id,
        data["resolution"],
        data.get("admin_notes", ""),
        actor,
    )
    return JSONResponse(
        content=DisputeResolutionResponse.model_validate(result).model_dump(mode="json")
    )
