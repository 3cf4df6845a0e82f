"""
fal.ai Connector
Queue API client for the video, avatar and voice models used by creatives

Flow per model call:
    POST https://queue.fal.run/{endpoint}            -> request_id
    GET  .../requests/{request_id}/status (polled)   -> COMPLETED | FAILED
    GET  .../requests/{request_id}                   -> output payload

Author: Backoffice API team
Date: 2026-02-14
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

QUEUE_URL = "https://queue.fal.run"

POLL_INTERVAL_SECONDS = 5.0
MAX_POLL_ATTEMPTS = 60

FAL_ENDPOINTS = {
    'pixverse-swap-person': "fal-ai/pixverse/swap",
    'pixverse-swap-bg': "fal-ai/pixverse/swap",
    'f5-tts': "fal-ai/f5-tts",
    'sync-lipsync': "fal-ai/sync-lipsync/v2/pro",
    'kling-avatar': "fal-ai/kling-video/ai-avatar/v2/pro",
    'kling-avatar-mascot-pro': "fal-ai/kling-video/ai-avatar/v2/pro",
    'kling-avatar-mascot-std': "fal-ai/kling-video/ai-avatar/v2/standard",
    'kling-i2v-pro': "fal-ai/kling-video/v2.6/pro/image-to-video",
    'veo31-text-video': "fal-ai/veo3.1",
}

# Cents per successful call
MODEL_COSTS = {
    'pixverse-swap-person': 50,
    'pixverse-swap-bg': 30,
    'f5-tts': 10,
    'sync-lipsync': 40,
    'kling-avatar': 80,
    'kling-avatar-mascot-pro': 80,
    'kling-avatar-mascot-std': 40,
    'kling-i2v-pro': 60,
    'veo31-text-video': 100,
}
DEFAULT_MODEL_COST = 50


def model_cost(model_id: str) -> int:
    return MODEL_COSTS.get(model_id, DEFAULT_MODEL_COST)


def extract_output_url(result: Dict[str, Any]) -> Optional[str]:
    """Models return their output under different keys"""
    for key in ('video', 'image', 'output', 'audio'):
        value = result.get(key)
        if isinstance(value, dict) and value.get('url'):
            return value['url']
    images = result.get('images')
    if images and isinstance(images[0], dict) and images[0].get('url'):
        return images[0]['url']
    if isinstance(result.get('video_url'), str):
        return result['video_url']
    if isinstance(result.get('url'), str):
        return result['url']
    return None


@dataclass
class FalResult:
    success: bool
    url: Optional[str] = None
    request_id: Optional[str] = None
    error: Optional[str] = None


class FalConnector:
    """Connector for the fal.ai queue API"""

    def __init__(
        self,
        api_key: str,
        transport: httpx.AsyncBaseTransport = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_attempts: int = MAX_POLL_ATTEMPTS
    ):
        if not api_key:
            raise ValueError("FAL_API_KEY não configurada")
        self.api_key = api_key
        self._transport = transport
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Key {self.api_key}"}

    async def run(self, model_id: str, payload: Dict[str, Any]) -> FalResult:
        """Submit a job for model_id and wait for its output URL"""
        endpoint = FAL_ENDPOINTS.get(model_id)
        if not endpoint:
            return FalResult(success=False, error=f"Unknown model: {model_id}")

        body = {key: value for key, value in payload.items() if value is not None}

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=60.0) as client:
                submit = await client.post(f"{QUEUE_URL}/{endpoint}", headers=self._headers(), json=body)
                if not submit.is_success:
                    return FalResult(success=False, error=f"Fal submit error: {submit.status_code} - {submit.text[:200]}")

                try:
                    request_id = submit.json().get("request_id")
                except ValueError:
                    return FalResult(success=False, error=f"Invalid JSON from Fal submit: {submit.text[:100]}")
                if not request_id:
                    return FalResult(success=False, error="No request_id from fal.ai")

                logger.info(f"fal {model_id}: submitted request {request_id}")
                return await self._wait(client, endpoint, request_id)

        except httpx.HTTPError as e:
            logger.error(f"fal {model_id} error: {e}")
            return FalResult(success=False, error=str(e))

    async def _wait(self, client: httpx.AsyncClient, endpoint: str, request_id: str) -> FalResult:
        request_url = f"{QUEUE_URL}/{endpoint}/requests/{request_id}"

        for attempt in range(self.max_attempts):
            await asyncio.sleep(self.poll_interval)

            response = await client.get(f"{request_url}/status", headers=self._headers())
            try:
                status = response.json()
            except ValueError:
                logger.warning(f"fal status for {request_id} is not JSON (attempt {attempt + 1})")
                continue

            if status.get("status") == "COMPLETED":
                result = await client.get(request_url, headers=self._headers())
                try:
                    output = result.json()
                except ValueError:
                    return FalResult(
                        success=False, request_id=request_id,
                        error=f"Invalid JSON from Fal result: {result.text[:100]}"
                    )
                return FalResult(success=True, url=extract_output_url(output), request_id=request_id)

            if status.get("status") == "FAILED":
                return FalResult(
                    success=False, request_id=request_id,
                    error=f"Fal job failed: {status.get('error') or 'Unknown error'}"
                )

        return FalResult(success=False, request_id=request_id, error="Fal job timeout")
