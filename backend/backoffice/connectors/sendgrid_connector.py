"""
SendGrid Connector
Transactional e-mail through the SendGrid v3 Mail Send API

Author: Backoffice API team
Date: 2026-02-15
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class EmailSendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class SendGridConnector:
    """Connector for api.sendgrid.com"""

    base_url = "https://api.sendgrid.com"

    def __init__(self, api_key: str, transport: httpx.AsyncBaseTransport = None):
        self.api_key = api_key
        self._transport = transport

    async def send(
        self,
        to_email: str,
        subject: str,
        html: str,
        from_email: str,
        from_name: str,
        reply_to: Optional[str] = None
    ) -> EmailSendResult:
        payload = {
            'personalizations': [{'to': [{'email': to_email}]}],
            'from': {'email': from_email, 'name': from_name},
            'subject': subject,
            'content': [{'type': "text/html", 'value': html}],
        }
        if reply_to:
            payload['reply_to'] = {'email': reply_to}

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=30.0) as client:
                response = await client.post(
                    f"{self.base_url}/v3/mail/send",
                    headers={'Authorization': f"Bearer {self.api_key}"},
                    json=payload
                )

            if not response.is_success:
                logger.error(f"SendGrid error: {response.status_code} {response.text}")
                return EmailSendResult(
                    success=False,
                    error=f"SendGrid error: {response.status_code} - {response.text[:300]}"
                )

            return EmailSendResult(success=True, message_id=response.headers.get("X-Message-Id"))

        except httpx.HTTPError as e:
            logger.error(f"SendGrid request error: {e}")
            return EmailSendResult(success=False, error=str(e))
