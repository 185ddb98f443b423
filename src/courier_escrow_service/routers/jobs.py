"""Job lifecycle endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from courier_escrow_service.core.exceptions import NotFound
from courier_escrow_service.core.state import AppState, get_app_state
from courier_escrow_service.routers.validation import authenticate, read_json_body
from courier_escrow_service.schemas import (
    JobEventListResponse,
    JobListResponse,
    JobResponse,
    JobSettlementResponse,
    TransactionResponse,
)
from courier_escrow_service.services.job_state_machine import JobStateMachine

router = APIRouter()


def _jobs(state: AppState) -> JobStateMachine:
    if state.job_state_machine is None:
        msg = "JobStateMachine not initialized"
        raise RuntimeError(msg)
    return state.job_state_machine


def _job_content(job: dict[str, object]) -> dict[str, object]:
    return JobResponse.model_validate(job).model_dump(mode="json")


# ---------------------------------------------------------------------------
# POST /jobs, GET /jobs (MUST be before GET /jobs/{job_id})
# ---------------------------------------------------------------------------


@router.post("/jobs", status_code=201)
async def create_job(request: Request) -> JSONResponse:
    """Create a job in status 'open' for the calling client."""
    actor = authenticate(request)
    data = await read_json_body(request)
    job = await _jobs(get_app_state()).create_job(actor, data)
    return JSONResponse(status_code=201, content=_job_content(job))


@router.get("/jobs")
async def list_jobs(request: Request) -> JSONResponse:
    """List jobs visible to the caller, optionally filtered by status."""
    actor = authenticate(request)
    status = request.query_params.get("status")
    jobs = await _jobs(get_app_state()).list_jobs(actor, status=status)
    return JSONResponse(
        content=JobListResponse.model_validate({"jobs": jobs}).model_dump(mode="json")
    )


# ---------------------------------------------------------------------------
# Single job
# ---------------------------------------------------------------------------


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, request: Request) -> JSONResponse:
    actor = authenticate(request)
    job = await _jobs(get_app_state()).get_job(job_id, actor)
    return JSONResponse(content=_job_content(job))


@router.get("/jobs/{job_id}/events")
async def list_job_events(job_id: str, request: Request) -> JSONResponse:
    """Status history of a job, oldest first."""
    actor = authenticate(request)
    events = await _jobs(get_app_state()).list_events(job_id, actor)
    return JSONResponse(
        content=JobEventListResponse.model_validate({"events": events}).model_dump(mode="json")
    )


@router.get("/jobs/{job_id}/transaction")
async def get_job_transaction(job_id: str, request: Request) -> JSONResponse:
    """The escrow entry for a job, once a bid has been accepted."""
    actor = authenticate(request)
    state = get_app_state()
    await _jobs(state).get_job(job_id, actor)
    if state.escrow_manager is None:
        msg = "EscrowManager not initialized"
        raise RuntimeError(msg)
    transaction = state.escrow_manager.get_transaction_for_job(job_id)
    if transaction is None:
        raise NotFound("TRANSACTION_NOT_FOUND", "Job has no escrow transaction", 404)
    return JSONResponse(
        content=TransactionResponse.model_validate(transaction).model_dump(mode="json")
    )


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


@router.post("/jobs/{job_id}/bidding")
async def start_bidding(job_id: str, request: Request) -> JSONResponse:
    actor = authenticate(request)
    job = await _jobs(get_app_state()).start_bidding(job_id, actor)
    return JSONResponse(content=_job_content(job))


@router.post("/jobs/{job_id}/status")
async def advance_job_status(job_id: str, request: Request) -> JSONResponse:
    """Report driver progress: {"status": ..., "proof_photo_url": optional}."""
    actor = authenticate(request)
    data = await read_json_body(request)
    job = await _jobs(get_app_state()).advance(
        job_id,
        data.get("status"),  # type: ignore[arg-type]
        actor,
        proof_photo_url=data.get("proof_photo_url"),
    )
    return JSONResponse(content=_job_content(job))


@router.post("/jobs/{job_id}/confirm")
async def confirm_delivery(job_id: str, request: Request) -> JSONResponse:
    """Client confirms receipt; escrow is released to the driver."""
    actor = authenticate(request)
    result = await _jobs(get_app_state()).confirm_delivery(job_id, actor)
    return JSONResponse(
        content=JobSettlementResponse.model_validate(result).model_dump(mode="json")
    )


@router.post("/jobs/{job_id}/complete")
async def complete_job(job_id: str, request: Request) -> JSONResponse:
    actor = authenticate(request)
    job = await _jobs(get_app_state()).complete(job_id, actor)
    return JSONResponse(content=_job_content(job))


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(job_id: str, request: Request) -> JSONResponse:
    """Cancel a job; refunds the client when escrow is held."""
    actor = authenticate(request)
    state = get_app_state()
    if state.cancellation is None:
        msg = "CancellationCoordinator not initialized"
        raise RuntimeError(msg)
    result = await state.cancellation.cancel(job_id, actor)
    return JSONResponse(
        content=JobSettlementResponse.model_validate(result).model_dump(mode="json")
    )
