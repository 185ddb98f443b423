"""Bid endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from courier_escrow_service.core.exceptions import ValidationFailed
from courier_escrow_service.core.state import AppState, get_app_state
from courier_escrow_service.routers.validation import authenticate, read_json_body
from courier_escrow_service.schemas import BidListResponse, BidResponse, JobSettlementResponse
from courier_escrow_service.services.bid_ledger import BidLedger

router = APIRouter()


def _bids(state: AppState) -> BidLedger:
    if state.bid_ledger is None:
        msg = "BidLedger not initialized"
        raise RuntimeError(msg)
    return state.bid_ledger


def _bid_content(bid: dict[str, object]) -> dict[str, object]:
    return BidResponse.model_validate(bid).model_dump(mode="json")


@router.post("/jobs/{job_id}/bids", status_code=201)
async def submit_bid(job_id: str, request: Request) -> JSONResponse:
    """Place a bid: {"amount": ..., "message": optional}."""
    actor = authenticate(request)
    data = await read_json_body(request)
    if "amount" not in data:
        raise ValidationFailed("MISSING_FIELD", "Missing required field: amount", 400)
    bid = await _bids(get_app_state()).submit_bid(
        job_id, actor, data["amount"], data.get("message")
    )
    return JSONResponse(status_code=201, content=_bid_content(bid))


@router.get("/jobs/{job_id}/bids")
async def list_bids(job_id: str, request: Request) -> JSONResponse:
    actor = authenticate(request)
    bids = await _bids(get_app_state()).list_bids(job_id, actor)
    return JSONResponse(
        content=BidListResponse.model_validate({"bids": bids}).model_dump(mode="json")
    )


@router.get("/bids/{bid_id}")
async def get_bid(bid_id: str, request: Request) -> JSONResponse:
    actor = authenticate(request)
    bid = await _bids(get_app_state()).get_bid(bid_id, actor)
    return JSONResponse(content=_bid_content(bid))


@router.post("/bids/{bid_id}/accept")
async def accept_bid(bid_id: str, request: Request) -> JSONResponse:
    """Accept a bid, assigning the job and holding escrow."""
    actor = authenticate(request)
    result = await _bids(get_app_state()).accept_bid(bid_id, actor)
    return JSONResponse(
        content=JobSettlementResponse.model_validate(result).model_dump(mode="json")
    )


@router.post("/bids/{bid_id}/shortlist")
async def shortlist_bid(bid_id: str, request: Request) -> JSONResponse:
    actor = authenticate(request)
    bid = await _bids(get_app_state()).shortlist_bid(bid_id, actor)
    return JSONResponse(content=_bid_content(bid))


@router.post("/bids/{bid_id}/reject")
async def reject_bid(bid_id: str, request: Request) -> JSONResponse:
    actor = authenticate(request)
    bid = await _bids(get_app_state()).reject_bid(bid_id, actor)
    return JSONResponse(content=_bid_content(bid))


@router.post("/bids/{bid_id}/withdraw")
async def withdraw_bid(bid_id: str, request: Request) -> JSONResponse:
    actor = authenticate(request)
    bid = await _bids(get_app_state()).withdraw_bid(bid_id, actor)
    return JSONResponse(content=_bid_content(bid))
