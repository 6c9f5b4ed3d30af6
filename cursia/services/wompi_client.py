"""Minimal Wompi REST client (subscriptions)."""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

import requests

from cursia.core.config import settings
from cursia.core.errors import ExternalServiceError
from cursia.core.plans import UserPlan

logger = logging.getLogger(__name__)


def create_subscription_reference(user_id: int, plan: UserPlan | str) -> str:
    plan_value = plan.value if isinstance(plan, UserPlan) else str(plan)
    return f"cursia-{plan_value.lower()}-{user_id}-{int(time.time() * 1000)}"


class WompiClient:
    def __init__(self, base_url: Optional[str] = None, private_key: Optional[str] = None, timeout: float = 15.0):
        self.base_url = (base_url or settings.WOMPI_BASE_URL).rstrip("/")
        self.private_key = private_key or settings.WOMPI_PRIVATE_KEY
        self.timeout = timeout

    def create_subscription(
        self,
        *,
        customer_email: str,
        amount_in_cents: int,
        reference: str,
        payment_source_id: str,
        currency: str = "COP",
    ) -> dict[str, Any]:
        payload = {
            "customer_email": customer_email,
            "amount_in_cents": amount_in_cents,
            "currency": currency,
            "reference": reference,
            "payment_method": {"type": "CARD", "token": payment_source_id},
            "recurring_period": {"interval": "MONTHLY", "interval_count": 1},
        }
        return self._request("POST", "/subscriptions", json=payload)

    def get_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self._request("GET", f"/subscriptions/{subscription_id}")

    def cancel_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self._request("DELETE", f"/subscriptions/{subscription_id}")

    def _request(self, method: str, endpoint: str, **kwargs) -> dict[str, Any]:
        if not self.private_key:
            raise ExternalServiceError("Wompi no está configurado")

        url = f"{self.base_url}{endpoint}"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.private_key}",
        }
        try:
            response = requests.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error("Error de red con Wompi (%s %s): %s", method, endpoint, exc)
            raise ExternalServiceError("Wompi API unreachable") from exc

        if not response.ok:
            logger.error("Wompi respondió %s en %s %s: %s", response.status_code, method, endpoint, response.text[:500])
            raise ExternalServiceError("Wompi API error", providerStatus=response.status_code)

        body = response.json() if response.content else {}
        # Wompi envuelve las respuestas en {"data": {...}}.
        return body.get("data", body) if isinstance(body, dict) else {}
