"""Router test fixtures: a real app over a temp-file database."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient

from courier_escrow_service.app import create_app
from courier_escrow_service.config import clear_settings_cache
from courier_escrow_service.core.state import get_app_state, reset_app_state
from tests.helpers import (
    ADMIN_KEYPAIR,
    generate_keypair,
    job_details,
    make_login_token,
    write_config,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
    from fastapi import FastAPI


@pytest.fixture
async def app(tmp_path: Any) -> AsyncIterator[FastAPI]:
    """Create a test app with one configured admin key."""
    os.environ["CONFIG_PATH"] = write_config(
        tmp_path, admin_public_keys=[ADMIN_KEYPAIR[1]]
    )

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with test_app.router.lifespan_context(test_app):
        yield test_app

    reset_app_state()
    clear_settings_cache()


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c


def bearer(session_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {session_token}"}


async def login(client: AsyncClient, user_id: str, private_key: Ed25519PrivateKey) -> str:
    """Log in and return the session token."""
    response = await client.post(
        "/sessions", json={"token": make_login_token(user_id, private_key)}
    )
    assert response.status_code == 201, f"Failed to log in: {response.text}"
    return str(response.json()["session_token"])


async def register(
    client: AsyncClient, role: str, display_name: str = "Test User"
) -> tuple[dict[str, Any], dict[str, str]]:
    """Register a user and log in. Returns (user, auth headers)."""
    private_key, public_key = generate_keypair()
    response = await client.post(
        "/users",
        json={"display_name": display_name, "role": role, "public_key": public_key},
    )
    assert response.status_code == 201, f"Failed to register: {response.text}"
    user = response.json()
    return user, bearer(await login(client, user["user_id"], private_key))


async def admin_headers(client: AsyncClient) -> dict[str, str]:
    """Log in as the configured admin."""
    state = get_app_state()
    assert state.user_registry is not None
    admin = state.user_registry.ensure_admin(ADMIN_KEYPAIR[1])
    return bearer(await login(client, admin["user_id"], ADMIN_KEYPAIR[0]))


async def create_job(client: AsyncClient, headers: dict[str, str], **overrides: Any) -> str:
    response = await client.post("/jobs", json=job_details(**overrides), headers=headers)
    assert response.status_code == 201, f"Failed to create job: {response.text}"
    return str(response.json()["job_id"])


async def assigned_job(
    client: AsyncClient,
    client_headers: dict[str, str],
    driver_headers: dict[str, str],
    amount: str = "70.00",
) -> dict[str, Any]:
    """Create a job, bid on it, accept the bid. Returns the accept response."""
    job_id = await create_job(client, client_headers)
    bid = await client.post(
        f"/jobs/{job_id}/bids", json={"amount": amount}, headers=driver_headers
    )
    assert bid.status_code == 201, f"Failed to bid: {bid.text}"
    accepted = await client.post(
        f"/bids/{bid.json()['bid_id']}/accept", headers=client_headers
    )
    assert accepted.status_code == 200, f"Failed to accept: {accepted.text}"
    return dict(accepted.json())


async def advance(
    client: AsyncClient, job_id: str, driver_headers: dict[str, str], *statuses: str
) -> None:
    for status in statuses:
        response = await client.post(
            f"/jobs/{job_id}/status", json={"status": status}, headers=driver_headers
        )
        assert response.status_code == 200, f"Failed to advance to {status}: {response.text}"
