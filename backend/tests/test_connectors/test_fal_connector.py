"""
Unit tests for FalConnector (queue submit + status polling)

Author: Backoffice API team
Date: 2026-02-14
"""
import json

import httpx
import pytest

from backoffice.connectors.fal_connector import (
    QUEUE_URL, FalConnector, extract_output_url, model_cost,
)

ENDPOINT = f"{QUEUE_URL}/fal-ai/kling-video/v2.6/pro/image-to-video"


@pytest.fixture
def fal():
    return FalConnector("fal-key", poll_interval=0, max_attempts=3)


class TestFalHelpers:

    def test_extract_output_url(self):
        assert extract_output_url({"video": {"url": "https://v.mp4"}}) == "https://v.mp4"
        assert extract_output_url({"audio": {"url": "https://a.wav"}}) == "https://a.wav"
        assert extract_output_url({"images": [{"url": "https://i.png"}]}) == "https://i.png"
        assert extract_output_url({"video_url": "https://v2.mp4"}) == "https://v2.mp4"
        assert extract_output_url({}) is None

    def test_model_cost_default(self):
        assert model_cost("veo31-text-video") == 100
        assert model_cost("new-model") == 50

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            FalConnector("")


class TestFalRun:

    @pytest.mark.asyncio
    async def test_unknown_model(self, fal, respx_mock):
        result = await fal.run("does-not-exist", {})

        assert result.success is False
        assert result.error == "Unknown model: does-not-exist"

    @pytest.mark.asyncio
    async def test_submit_poll_and_fetch(self, fal, respx_mock):
        # Arrange
        submit = respx_mock.post(ENDPOINT).mock(return_value=httpx.Response(200, json={"request_id": "req-1"}))
        respx_mock.get(f"{ENDPOINT}/requests/req-1/status").mock(side_effect=[
            httpx.Response(200, json={"status": "IN_QUEUE"}),
            httpx.Response(200, json={"status": "COMPLETED"}),
        ])
        respx_mock.get(f"{ENDPOINT}/requests/req-1").mock(
            return_value=httpx.Response(200, json={"video": {"url": "https://fal.media/out.mp4"}})
        )

        # Act
        result = await fal.run("kling-i2v-pro", {"prompt": "slow zoom", "negative_prompt": None})

        # Assert
        assert result.success is True
        assert result.url == "https://fal.media/out.mp4"
        assert result.request_id == "req-1"
        assert json.loads(submit.calls.last.request.content) == {"prompt": "slow zoom"}
        assert submit.calls.last.request.headers["Authorization"] == "Key fal-key"

    @pytest.mark.asyncio
    async def test_failed_job(self, fal, respx_mock):
        respx_mock.post(ENDPOINT).mock(return_value=httpx.Response(200, json={"request_id": "req-1"}))
        respx_mock.get(f"{ENDPOINT}/requests/req-1/status").mock(
            return_value=httpx.Response(200, json={"status": "FAILED", "error": "NSFW"})
        )

        result = await fal.run("kling-i2v-pro", {"prompt": "x"})

        assert result.success is False
        assert result.error == "Fal job failed: NSFW"

    @pytest.mark.asyncio
    async def test_timeout_after_max_attempts(self, fal, respx_mock):
        respx_mock.post(ENDPOINT).mock(return_value=httpx.Response(200, json={"request_id": "req-1"}))
        status = respx_mock.get(f"{ENDPOINT}/requests/req-1/status").mock(
            return_value=httpx.Response(200, json={"status": "IN_PROGRESS"})
        )

        result = await fal.run("kling-i2v-pro", {"prompt": "x"})

        assert result.error == "Fal job timeout"
        assert status.call_count == 3

    @pytest.mark.asyncio
    async def test_submit_error(self, fal, respx_mock):
        respx_mock.post(ENDPOINT).mock(return_value=httpx.Response(401, text="Unauthorized"))

        result = await fal.run("kling-i2v-pro", {"prompt": "x"})

        assert result.success is False
        assert result.error.startswith("Fal submit error: 401")
