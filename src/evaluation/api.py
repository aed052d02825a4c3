# evaluation-core - Platform API Client
# AGPL-3.0 License

"""
API Client for the engagement platform services

Outbound calls made after an evaluation commits:
- Crediting XP to the submitter (reward ledger)
- Notifying the submitter of state changes
- Asking the assignment service for a second reviewer
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Optional

import httpx

from .config import EvaluationConfig
from .errors import RewardLedgerError

logger = logging.getLogger("evaluation.api")


class PlatformAPIClient:
    """Client for the platform's ledger, notification and assignment endpoints"""

    def __init__(
        self,
        config: Optional[EvaluationConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or EvaluationConfig.from_env()
        self.base_url = self.config.platform_api_url
        self.api_key = self.config.platform_api_key
        self.webhook_secret = self.config.webhook_secret

        if not self.api_key:
            logger.warning(
                "PLATFORM_API_KEY not set - API calls will fail authentication"
            )

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=30.0,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client"""
        await self._client.aclose()

    async def increment_xp(self, user_id: str, amount: int, action_id: str) -> None:
        """
        Credit XP to a user for an approved action.

        The action id doubles as the idempotency key, so a replayed call for
        the same action is not credited twice by the ledger.

        Raises:
            RewardLedgerError: the ledger did not acknowledge the credit
        """
        payload = {"user_id": user_id, "amount": amount, "action_id": action_id}

        try:
            response = await self._client.post(
                "/xp/increment",
                json=payload,
                headers={
                    "Idempotency-Key": f"action:{action_id}",
                    "X-Evaluation-Signature": self._sign_payload(payload),
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(
                f"Failed to credit {amount} XP to {user_id} for action {action_id}: {e}",
                exc_info=True,
            )
            raise RewardLedgerError(action_id, amount, str(e)) from e

        logger.info(f"Credited {amount} XP to {user_id} for action {action_id}")

    async def notify(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Send a notification to a user. Best-effort."""
        payload = {
            "user_id": user_id,
            "type": notification_type,
            "title": title,
            "message": message,
            "metadata": metadata or {},
        }

        try:
            response = await self._client.post(
                "/notifications",
                json=payload,
                headers={"X-Evaluation-Signature": self._sign_payload(payload)},
            )
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning(f"Failed to notify {user_id} ({notification_type}): {e}")
            return False

    async def ensure_second_reviewer(self, action_id: str) -> bool:
        """Ask the assignment service to queue a second reviewer. Best-effort."""
        payload = {"action_id": action_id}

        try:
            response = await self._client.post(
                "/evaluations/assign",
                json=payload,
                headers={"X-Evaluation-Signature": self._sign_payload(payload)},
            )
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning(f"Failed to request second reviewer for {action_id}: {e}")
            return False

    def _sign_payload(self, payload: dict) -> str:
        """Generate HMAC-SHA256 signature for an outbound payload"""
        if not self.webhook_secret:
            return ""

        # Compact JSON to match the platform's JSON.stringify()
        payload_bytes = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        return hmac.new(
            self.webhook_secret.encode("utf-8"),
            payload_bytes,
            hashlib.sha256,
        ).hexdigest()
