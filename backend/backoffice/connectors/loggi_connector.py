"""
Loggi Connector
Package tracking through the Loggi REST API

Author: Backoffice API team
Date: 2026-02-12
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from backoffice.connectors.tracking_result import TrackingResult
from backoffice.domain.shipment import TrackingEvent

logger = logging.getLogger(__name__)

LOGGI_STATUS = {
    "created": "label_created",
    "picked_up": "posted",
    "in_transit": "in_transit",
    "out_for_delivery": "out_for_delivery",
    "delivered": "delivered",
    "failed": "failed",
    "returned": "returned",
    "cancelled": "canceled",
}


def map_loggi_status(status: Optional[str]) -> str:
    return LOGGI_STATUS.get((status or "").lower(), "unknown")


class LoggiConnector:
    """Connector for api.loggi.com (credentials: company_id, api_key)"""

    base_url = "https://api.loggi.com"

    def __init__(self, credentials: Dict[str, Any], transport: httpx.AsyncBaseTransport = None):
        self.company_id = (credentials or {}).get("company_id")
        self.api_key = (credentials or {}).get("api_key")
        self._transport = transport

    async def fetch_events(self, tracking_code: str) -> TrackingResult:
        if not self.company_id or not self.api_key:
            return TrackingResult(success=False, error="missing_credentials")

        url = f"{self.base_url}/v1/companies/{self.company_id}/packages/{tracking_code}/tracking"

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=30.0) as client:
                response = await client.get(url, headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Accept": "application/json",
                })

            if not response.is_success:
                logger.error(f"Loggi API error: {response.status_code} {response.text}")
                return TrackingResult(success=False, error=f"api_error_{response.status_code}")

            events = [
                TrackingEvent(
                    provider_event_id=f"loggi_{tracking_code}_{idx}",
                    status=map_loggi_status(item.get("status")),
                    description=item.get("description") or "Evento",
                    location=item.get("location") or "",
                    occurred_at=item.get("timestamp") or datetime.now(timezone.utc),
                )
                for idx, item in enumerate(response.json().get("tracking") or [])
            ]
            return TrackingResult(success=True, events=events)

        except Exception as e:
            logger.error(f"Loggi fetch error: {e}")
            return TrackingResult(success=False, error="fetch_error")
