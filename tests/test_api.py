# evaluation-core - Peer evaluation engine
# SPDX-License-Identifier: AGPL-3.0-or-later
# Full license: https://www.gnu.org/licenses/agpl-3.0.html

"""Tests for the platform API client."""

import hashlib
import hmac
import json
import sys
from pathlib import Path

import httpx
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from evaluation.api import PlatformAPIClient
from evaluation.config import EvaluationConfig
from evaluation.errors import RewardLedgerError

CONFIG = EvaluationConfig(
    platform_api_url="https://platform.test/api",
    platform_api_key="key-123",
    webhook_secret="secret",
)


def make_client(handler):
    return PlatformAPIClient(CONFIG, transport=httpx.MockTransport(handler))


class TestIncrementXp:
    """Reward ledger calls."""

    @pytest.mark.asyncio
    async def test_sends_idempotency_key_and_signature(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True})

        client = make_client(handler)
        await client.increment_xp("user-1", 90, "action-1")
        await client.close()

        request = seen[0]
        assert request.url.path == "/api/xp/increment"
        assert request.headers["Idempotency-Key"] == "action:action-1"
        assert request.headers["Authorization"] == "Bearer key-123"
        body = json.loads(request.content)
        assert body == {"user_id": "user-1", "amount": 90, "action_id": "action-1"}

        expected = hmac.new(
            b"secret",
            json.dumps(body, separators=(",", ":")).encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        assert request.headers["X-Evaluation-Signature"] == expected

    @pytest.mark.asyncio
    async def test_ledger_failure_raises(self):
        client = make_client(lambda request: httpx.Response(503))

        with pytest.raises(RewardLedgerError) as exc_info:
            await client.increment_xp("user-1", 90, "action-1")
        await client.close()

        assert exc_info.value.amount == 90
        assert exc_info.value.code == "reward_ledger_error"
        assert "approved" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_network_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        client = make_client(handler)
        with pytest.raises(RewardLedgerError):
            await client.increment_xp("user-1", 90, "action-1")
        await client.close()


class TestBestEffortCalls:
    """Notifications and assignment requests never raise."""

    @pytest.mark.asyncio
    async def test_notify_success(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(201)

        client = make_client(handler)
        ok = await client.notify(
            "user-1", "evaluation_complete", "Action approved!", "You earned 90 XP!",
            {"xp_earned": 90},
        )
        await client.close()

        assert ok is True
        assert seen[0]["type"] == "evaluation_complete"
        assert seen[0]["metadata"] == {"xp_earned": 90}

    @pytest.mark.asyncio
    async def test_notify_failure_returns_false(self):
        client = make_client(lambda request: httpx.Response(500))
        assert await client.notify("user-1", "evaluation_retry", "t", "m") is False
        await client.close()

    @pytest.mark.asyncio
    async def test_ensure_second_reviewer(self):
        seen = []

        def handler(request):
            seen.append(request.url.path)
            return httpx.Response(200, json={"items": []})

        client = make_client(handler)
        assert await client.ensure_second_reviewer("action-1") is True
        await client.close()
        assert seen == ["/api/evaluations/assign"]

    @pytest.mark.asyncio
    async def test_ensure_second_reviewer_failure(self):
        client = make_client(lambda request: httpx.Response(400))
        assert await client.ensure_second_reviewer("action-1") is False
        await client.close()

    def test_unsigned_without_secret(self):
        client = PlatformAPIClient(EvaluationConfig(platform_api_key="k"))
        assert client._sign_payload({"a": 1}) == ""
