"""Pydantic response models for the API."""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_jobs: int
    jobs_by_status: dict[str, int]


class ErrorResponse(BaseModel):
    """Standard error response model."""

    model_config = ConfigDict(extra="forbid")
    error: str
    kind: str
    message: str
    details: dict[str, object]


class UserResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    user_id: str
    display_name: str
    role: str
    public_key: str
    registered_at: str


class SessionResponse(BaseModel):
    """Response model for POST /sessions."""

    model_config = ConfigDict(extra="forbid")
    session_token: str
    token_type: Literal["Bearer"]
    expires_at: int
    user: UserResponse


class FareDetails(BaseModel):
    """Typed fare metadata attached to a job."""

    model_config = ConfigDict(extra="forbid")
    notes: str | None
    size_tier: str | None
    addons: list[str]
    estimated_fare: Decimal | None


class JobResponse(BaseModel):
    """Full job detail response model."""

    model_config = ConfigDict(extra="forbid")
    job_id: str
    job_number: str
    client_id: str
    assigned_driver_id: str | None
    assigned_bid_id: str | None
    status: str
    item_description: str
    item_category: str
    urgency: str
    pickup_address: str
    delivery_address: str
    budget_min: Decimal | None
    budget_max: Decimal | None
    final_amount: Decimal | None
    fare: FareDetails
    pickup_photo_url: str | None
    delivery_photo_url: str | None
    created_at: str
    assigned_at: str | None
    pickup_confirmed_at: str | None
    in_transit_at: str | None
    delivered_at: str | None
    confirmed_at: str | None
    completed_at: str | None
    cancelled_at: str | None
    cancelled_by: str | None


class JobListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    jobs: list[JobResponse]


class JobEventResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    event_id: str
    job_id: str
    from_status: str | None
    to_status: str
    actor_id: str
    actor_role: str
    created_at: str


class JobEventListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    events: list[JobEventResponse]


class BidResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    bid_id: str
    job_id: str
    driver_id: str
    amount: Decimal
    message: str | None
    status: str
    created_at: str
    updated_at: str


class BidListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    bids: list[BidResponse]


class TransactionResponse(BaseModel):
    """Escrow ledger entry."""

    model_config = ConfigDict(extra="forbid")
    transaction_id: str
    job_id: str
    client_id: str
    driver_id: str
    total_amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    driver_payout: Decimal
    payment_status: str
    held_at: str
    released_at: str | None
    refunded_at: str | None


class JobSettlementResponse(BaseModel):
    """A job together with the escrow entry the operation created or settled."""

    model_config = ConfigDict(extra="forbid")
    job: JobResponse
    transaction: TransactionResponse | None


class DisputeResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    dispute_id: str
    job_id: str
    opened_by: str
    opened_by_role: str
    reason: str
    description: str
    status: str
    resolution: str | None
    admin_notes: str | None
    reviewed_by: str | None
    resolved_by: str | None
    opened_at: str
    reviewed_at: str | None
    resolved_at: str | None


class DisputeListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    disputes: list[DisputeResponse]


class DisputeResolutionResponse(BaseModel):
    """Response model for POST /disputes/{dispute_id}/resolve."""

    model_config = ConfigDict(extra="forbid")
    dispute: DisputeResponse
    transaction: TransactionResponse


class WalletEntryResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    entry_id: str
    type: str
    amount: Decimal
    balance_after: Decimal
    reference: str
    created_at: str


class WalletResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    user_id: str
    balance: Decimal
    entries: list[WalletEntryResponse]


class CommissionRateResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    commission_rate_pct: Decimal
