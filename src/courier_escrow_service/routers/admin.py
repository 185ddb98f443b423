"""Admin settings endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from courier_escrow_service.core.exceptions import ValidationFailed
from courier_escrow_service.core.state import AppState, get_app_state
from courier_escrow_service.routers.validation import authenticate, read_json_body, require_admin
from courier_escrow_service.schemas import CommissionRateResponse
from courier_escrow_service.services.commission import CommissionRates

router = APIRouter()


def _rates(state: AppState) -> CommissionRates:
    if state.commission_rates is None:
        msg = "CommissionRates not initialized"
        raise RuntimeError(msg)
    return state.commission_rates


@router.get("/admin/settings/commission-rate")
async def get_commission_rate(request: Request) -> JSONResponse:
    require_admin(authenticate(request))
    rate = _rates(get_app_state()).current_rate()
    return JSONResponse(
        content=CommissionRateResponse(commission_rate_pct=rate).model_dump(mode="json")
    )


@router.put("/admin/settings/commission-rate")
async def set_commission_rate(request: Request) -> JSONResponse:
    """Change the rate applied to escrow holds created from now on."""
    require_admin(authenticate(request))
    data = await read_json_body(request)
    if "commission_rate_pct" not in data:
        raise ValidationFailed(
            "MISSING_FIELD", "Missing required field: commission_rate_pct", 400
        )
    rate = _rates(get_app_state()).set_rate(data["commission_rate_pct"])
    return JSONResponse(
        content=CommissionRateResponse(commission_rate_pct=rate).model_dump(mode="json")
    )
