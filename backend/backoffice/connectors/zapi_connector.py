"""
Z-API Connector
Sends WhatsApp text messages through a tenant's Z-API instance

Author: Backoffice API team
Date: 2026-02-11
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from backoffice.core.text import normalize_phone_br

logger = logging.getLogger(__name__)


@dataclass
class WhatsAppSendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class ZApiConnector:
    """
    Connector for Z-API (https://api.z-api.io)

    Credentials come from the tenant's whatsapp_configs row:
    instance_id, instance_token and client_token.
    """

    base_url = "https://api.z-api.io"

    def __init__(self, instance_id: str, instance_token: str, client_token: str,
                 transport: httpx.AsyncBaseTransport = None):
        self.instance_id = instance_id
        self.instance_token = instance_token
        self.client_token = client_token
        self._transport = transport

    @classmethod
    def from_config(cls, config: Dict[str, Any], transport: httpx.AsyncBaseTransport = None) -> "ZApiConnector":
        return cls(
            instance_id=config['instance_id'],
            instance_token=config['instance_token'],
            client_token=config['client_token'],
            transport=transport
        )

    async def send_text(self, phone: Optional[str], message: str) -> WhatsAppSendResult:
        """
        Send a text message.

        Args:
            phone: Any Brazilian format, normalized to 55 + DDD + number
            message: WhatsApp-formatted text (*bold*, emojis)

        Returns:
            WhatsAppSendResult, never raises on HTTP errors
        """
        if not phone:
            return WhatsAppSendResult(success=False, error="no_phone_number_configured")

        url = f"{self.base_url}/instances/{self.instance_id}/token/{self.instance_token}/send-text"
        headers = {
            'Content-Type': 'application/json',
            'Client-Token': self.client_token,
        }
        body = {'phone': normalize_phone_br(phone), 'message': message}

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=30.0) as client:
                response = await client.post(url, headers=headers, json=body)

            try:
                data = response.json()
            except ValueError:
                data = {}

            if not response.is_success or (isinstance(data, dict) and data.get('error')):
                error = (data.get('message') or data.get('error')) if isinstance(data, dict) else None
                error = error or f"HTTP {response.status_code}"
                logger.warning(f"Z-API send failed: {error}")
                return WhatsAppSendResult(success=False, error=str(error))

            return WhatsAppSendResult(
                success=True,
                message_id=data.get('messageId') or data.get('zaapId')
            )

        except httpx.HTTPError as e:
            logger.error(f"Z-API request error: {e}")
            return WhatsAppSendResult(success=False, error=str(e))
