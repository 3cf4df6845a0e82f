"""
Pagar.me Connector
Order/charge creation through the Pagar.me Core API v5

Authentication is HTTP Basic with the secret key as user and an empty
password.

Author: Backoffice API team
Date: 2026-02-16
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class PagarmeResult:
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class PagarmeConnector:
    """Connector for api.pagar.me/core/v5"""

    base_url = "https://api.pagar.me/core/v5"

    def __init__(self, api_key: str, transport: httpx.AsyncBaseTransport = None):
        self.api_key = api_key
        self._transport = transport

    async def create_order(self, payload: Dict[str, Any]) -> PagarmeResult:
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=30.0) as client:
                response = await client.post(f"{self.base_url}/orders", auth=(self.api_key, ""), json=payload)

            try:
                data = response.json()
            except ValueError:
                data = {}

            if not response.is_success:
                logger.error(f"Pagar.me error: {response.status_code} {data}")
                message = data.get('message') if isinstance(data, dict) else None
                return PagarmeResult(success=False, data=data, error=message or "Failed to create charge")

            return PagarmeResult(success=True, data=data)

        except httpx.HTTPError as e:
            logger.error(f"Pagar.me request error: {e}")
            return PagarmeResult(success=False, error=str(e))
