"""Tests for Content-Type and body size enforcement."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient

from courier_escrow_service.app import create_app
from courier_escrow_service.config import clear_settings_cache
from courier_escrow_service.core.state import reset_app_state
from tests.helpers import write_config
from tests.unit.routers.conftest import register

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


@pytest.fixture
async def small_body_client(tmp_path) -> AsyncIterator[AsyncClient]:
    """A client for an app that accepts at most 64 body bytes."""
    os.environ["CONFIG_PATH"] = write_config(tmp_path, max_body_size="64")
    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with test_app.router.lifespan_context(test_app):
        async with AsyncClient(
            transport=ASGITransport(app=test_app),
            base_url="http://test",
        ) as c:
            yield c


@pytest.mark.unit
class TestContentType:
    async def test_non_json_content_type(self, client):
        response = await client.post(
            "/users", content=b"role=client", headers={"Content-Type": "text/plain"}
        )
        assert response.status_code == 415
        assert response.json()["error"] == "UNSUPPORTED_MEDIA_TYPE"

    async def test_body_without_content_type(self, client):
        response = await client.post("/users", content=b"{}")
        assert response.status_code == 415

    async def test_empty_action_post_needs_no_content_type(self, client):
        _, headers = await register(client, "client")
        job = await client.post(
            "/jobs",
            json={
                "item_description": "Crate",
                "pickup_address": "A",
                "delivery_address": "B",
            },
            headers=headers,
        )
        response = await client.post(f"/jobs/{job.json()['job_id']}/cancel", headers=headers)
        assert response.status_code == 200

    async def test_get_is_not_checked(self, client):
        response = await client.get("/health", headers={"Content-Type": "text/plain"})
        assert response.status_code == 200


@pytest.mark.unit
class TestBodySize:
    async def test_oversized_body(self, small_body_client):
        response = await small_body_client.post(
            "/users", json={"display_name": "x" * 100, "role": "client", "public_key": "k"}
        )
        assert response.status_code == 413
        assert response.json()["error"] == "PAYLOAD_TOO_LARGE"

    async def test_body_within_limit(self, small_body_client):
        response = await small_body_client.post("/users", json={"role": "admin"})
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_NAME"
