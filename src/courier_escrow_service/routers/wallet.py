"""Wallet endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from courier_escrow_service.core.state import get_app_state
from courier_escrow_service.routers.validation import authenticate
from courier_escrow_service.schemas import WalletResponse

router = APIRouter()


@router.get("/wallet")
async def get_wallet(request: Request) -> JSONResponse:
    """Balance and ledger entries of the calling user."""
    actor = authenticate(request)
    state = get_app_state()
    if state.wallet_ledger is None:
        msg = "WalletLedger not initialized"
        raise RuntimeError(msg)

    wallet = state.wallet_ledger.get_wallet(actor.user_id)
    return JSONResponse(content=WalletResponse.model_validate(wallet).model_dump(mode="json"))
