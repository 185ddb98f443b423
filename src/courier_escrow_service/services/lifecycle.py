"""Status vocabularies and transition tables for jobs, bids, escrow and disputes."""

from __future__ import annotations

# Roles
ROLE_CLIENT = "client"
ROLE_DRIVER = "driver"
ROLE_ADMIN = "admin"
SELF_SERVICE_ROLES = frozenset({ROLE_CLIENT, ROLE_DRIVER})
ROLES = frozenset({ROLE_CLIENT, ROLE_DRIVER, ROLE_ADMIN})

# Job statuses
JOB_OPEN = "open"
JOB_BIDDING = "bidding"
JOB_ASSIGNED = "assigned"
JOB_PICKUP_CONFIRMED = "pickup_confirmed"
JOB_IN_TRANSIT = "in_transit"
JOB_DELIVERED = "delivered"
JOB_CONFIRMED = "confirmed"
JOB_COMPLETED = "completed"
JOB_CANCELLED = "cancelled"

JOB_STATUSES = frozenset(
    {
        JOB_OPEN,
        JOB_BIDDING,
        JOB_ASSIGNED,
        JOB_PICKUP_CONFIRMED,
        JOB_IN_TRANSIT,
        JOB_DELIVERED,
        JOB_CONFIRMED,
        JOB_COMPLETED,
        JOB_CANCELLED,
    }
)

# Jobs still taking bids; no escrow exists yet.
BIDDABLE = (JOB_OPEN, JOB_BIDDING)

# Jobs whose escrow is held and which may still be cancelled with a refund.
ESCROW_HELD_JOB_STATUSES = (JOB_ASSIGNED, JOB_PICKUP_CONFIRMED, JOB_IN_TRANSIT, JOB_DELIVERED)

# Jobs a client may cancel on their own.
CLIENT_CANCELLABLE = (JOB_OPEN, JOB_BIDDING, JOB_ASSIGNED, JOB_PICKUP_CONFIRMED)

DISPUTABLE = (JOB_PICKUP_CONFIRMED, JOB_IN_TRANSIT, JOB_DELIVERED)

TERMINAL = frozenset({JOB_CONFIRMED, JOB_COMPLETED, JOB_CANCELLED})

# Driver-reported progress: next status -> required current status.
DRIVER_PROGRESS = {
    JOB_PICKUP_CONFIRMED: JOB_ASSIGNED,
    JOB_IN_TRANSIT: JOB_PICKUP_CONFIRMED,
    JOB_DELIVERED: JOB_IN_TRANSIT,
}

STATUS_ALIASES = {"picked_up": JOB_PICKUP_CONFIRMED}

# Column stamped when a job enters a status.
STATUS_TIMESTAMP_COLUMNS = {
    JOB_ASSIGNED: "assigned_at",
    JOB_PICKUP_CONFIRMED: "pickup_confirmed_at",
    JOB_IN_TRANSIT: "in_transit_at",
    JOB_DELIVERED: "delivered_at",
    JOB_CONFIRMED: "confirmed_at",
    JOB_COMPLETED: "completed_at",
    JOB_CANCELLED: "cancelled_at",
}

# Bid statuses
BID_PENDING = "pending"
BID_SHORTLISTED = "shortlisted"
BID_ACCEPTED = "accepted"
BID_REJECTED = "rejected"
BID_WITHDRAWN = "withdrawn"
BID_ACTIVE = (BID_PENDING, BID_SHORTLISTED)

# Escrow payment statuses
PAYMENT_HELD = "held"
PAYMENT_PAID = "paid"
PAYMENT_REFUNDED = "refunded"

# Disputes
DISPUTE_OPEN = "open"
DISPUTE_UNDER_REVIEW = "under_review"
DISPUTE_RESOLVED = "resolved"
DISPUTE_ACTIVE = (DISPUTE_OPEN, DISPUTE_UNDER_REVIEW)

RESOLUTION_REFUND_CLIENT = "refund_client"
RESOLUTION_RELEASE_DRIVER = "release_driver"
RESOLUTIONS = frozenset({RESOLUTION_REFUND_CLIENT, RESOLUTION_RELEASE_DRIVER})

DISPUTE_REASONS = frozenset(
    {
        "damaged_item",
        "wrong_delivery",
        "late_delivery",
        "wrong_address",
        "item_not_as_described",
        "driver_no_show",
        "other",
    }
)

# Fare metadata
SIZE_TIERS = frozenset({"envelope", "small", "medium", "large", "bulky"})
URGENCIES = frozenset({"standard", "express", "urgent"})
DEFAULT_URGENCY = "standard"
DEFAULT_ITEM_CATEGORY = "general"

# Wallet entry types
ENTRY_ESCROW_RELEASE = "escrow_release"
ENTRY_ESCROW_REFUND = "escrow_refund"


def placeholders(values: tuple[str, ...]) -> str:
    """Return '?, ?, ...' for an IN clause over values."""
    return ", ".join("?" for _ in values)
