"""
Integration tests for the cron dispatch trigger.

WHAT: GET/POST /api/cron/reminders over HTTP.

WHY: External cron services drive dispatch when the in-process scheduler
is off. The trigger must be guarded by CRON_SECRET when one is set.

HOW: The dispatch run itself is replaced with an AsyncMock; the worker
has its own tests.
"""

import pytest
from unittest.mock import AsyncMock, patch
from httpx import AsyncClient

from invoicetrust.core.config import settings
from invoicetrust.schemas.reminder import DispatchSummary


@pytest.fixture
def mock_dispatch():
    summary = DispatchSummary(sent=3, failed=1, skipped=2, claimed=6)
    with patch(
        "invoicetrust.api.cron.run_reminder_dispatch_now", new=AsyncMock(return_value=summary)
    ) as mock:
        yield mock


class TestCronTrigger:
    """Integration tests for the cron endpoint."""

    @pytest.mark.asyncio
    async def test_open_without_secret(self, client: AsyncClient, mock_dispatch, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", None)

        response = await client.get("/api/cron/reminders")

        assert response.status_code == 200
        assert response.json() == {"sent": 3, "failed": 1, "skipped": 2}
        mock_dispatch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_post_with_secret(self, client: AsyncClient, mock_dispatch, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", "cron-s3cret")

        response = await client.post(
            "/api/cron/reminders", headers={"Authorization": "Bearer cron-s3cret"}
        )

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_wrong_secret(self, client: AsyncClient, mock_dispatch, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", "cron-s3cret")

        response = await client.post("/api/cron/reminders", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401
        mock_dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_secret(self, client: AsyncClient, mock_dispatch, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", "cron-s3cret")

        response = await client.get("/api/cron/reminders")

        assert response.status_code == 401
        mock_dispatch.assert_not_awaited()
