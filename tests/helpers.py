"""Shared test helpers for courier escrow service tests."""

from __future__ import annotations

import base64
import json
import time
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from courier_escrow_service.services.actor import Actor
from courier_escrow_service.services.bid_ledger import BidLedger
from courier_escrow_service.services.commission import CommissionRates
from courier_escrow_service.services.escrow_manager import EscrowManager
from courier_escrow_service.services.job_state_machine import JobStateMachine
from courier_escrow_service.services.wallet_ledger import WalletLedger

if TYPE_CHECKING:
    from courier_escrow_service.services.database import Database


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_keypair() -> tuple[Ed25519PrivateKey, str]:
    """Return a private key and its "ed25519:<base64>" public key string."""
    private_key = Ed25519PrivateKey.generate()
    raw = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return private_key, "ed25519:" + base64.b64encode(raw).decode("ascii")


def create_jws(
    payload: dict[str, Any],
    private_key: Ed25519PrivateKey,
    kid: str | None = None,
    alg: str = "EdDSA",
) -> str:
    """Create a compact JWS signed with private_key."""
    header: dict[str, str] = {"alg": alg}
    if kid is not None:
        header["kid"] = kid
    header_b64 = _b64url_encode(json.dumps(header, separators=(",", ":")).encode())
    payload_b64 = _b64url_encode(json.dumps(payload, separators=(",", ":")).encode())
    signing_input = f"{header_b64}.{payload_b64}".encode("ascii")
    return f"{header_b64}.{payload_b64}.{_b64url_encode(private_key.sign(signing_input))}"


def make_login_token(
    user_id: str,
    private_key: Ed25519PrivateKey,
    issued_at: float | None = None,
    payload_user_id: str | None = None,
    **overrides: Any,
) -> str:
    """Build a signed login token for user_id, signed with kid=user_id."""
    payload: dict[str, Any] = {
        "action": "login",
        "user_id": user_id if payload_user_id is None else payload_user_id,
        "iat": int(time.time() if issued_at is None else issued_at),
    }
    payload.update(overrides)
    return create_jws(payload, private_key, kid=user_id)


def job_details(**overrides: Any) -> dict[str, Any]:
    """Return a valid job creation body."""
    base: dict[str, Any] = {
        "item_description": "Box of books",
        "pickup_address": "12 Market Street",
        "delivery_address": "48 Harbour Road",
        "budget_min": "50.00",
        "budget_max": "100.00",
    }
    base.update(overrides)
    return base


CLIENT = Actor(user_id="usr-client", role="client")
OTHER_CLIENT = Actor(user_id="usr-other-client", role="client")
DRIVER = Actor(user_id="usr-driver", role="driver")
OTHER_DRIVER = Actor(user_id="usr-other-driver", role="driver")
ADMIN = Actor(user_id="usr-admin", role="admin")


async def advance_to(jobs: JobStateMachine, job_id: str, *statuses: str) -> dict[str, Any]:
    """Report driver progress through statuses in order."""
    job: dict[str, Any] = {}
    for status in statuses:
        job = await jobs.advance(job_id, status, DRIVER)
    return job


SESSION_SECRET = "test-session-secret-0123456789abcdef"

# Admin key listed in router test configs
ADMIN_KEYPAIR = generate_keypair()


def write_config(
    tmp_path: Any,
    admin_public_keys: list[str] | None = None,
    **overrides: str,
) -> str:
    """Write a valid config.yaml into tmp_path and return its path."""
    keys = admin_public_keys or []
    admin_keys = "".join(f'\n    - "{key}"' for key in keys) if keys else " []"
    values = {
        "db_path": str(tmp_path / "escrow.db"),
        "log_directory": str(tmp_path / "logs"),
        "commission": "15",
        "max_body_size": "1048576",
    }
    values.update(overrides)
    config_content = f"""\
service:
  name: "courier-escrow"
  version: "0.1.0"
server:
  host: "127.0.0.1"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{values['log_directory']}"
database:
  path: "{values['db_path']}"
auth:
  session_secret: "{SESSION_SECRET}"
  session_ttl_seconds: 3600
  admin_public_keys:{admin_keys}
escrow:
  default_commission_rate_pct: "{values['commission']}"
notifications:
  base_url: null
  dispatch_path: "/notifications"
  timeout_seconds: 5
request:
  max_body_size: {values['max_body_size']}
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)
    return str(config_path)


def build_bid_ledger(database: Database) -> BidLedger:
    """Wire a bid ledger and its collaborators over database, as a second process would."""
    escrow = EscrowManager(
        database=database,
        wallet_ledger=WalletLedger(database=database),
        commission_rates=CommissionRates(database=database, default_rate_pct=Decimal("15")),
    )
    notifier = MagicMock()
    jobs = JobStateMachine(database=database, escrow=escrow, notifier=notifier)
    return BidLedger(database=database, jobs=jobs, escrow=escrow, notifier=notifier)
