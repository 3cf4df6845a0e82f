"""
Unit tests for the outbound messaging and payment connectors
(Z-API, SendGrid, Pagar.me)

Author: Backoffice API team
Date: 2026-02-15
"""
import json

import httpx
import pytest

from backoffice.connectors.pagarme_connector import PagarmeConnector
from backoffice.connectors.sendgrid_connector import SendGridConnector
from backoffice.connectors.zapi_connector import ZApiConnector

ZAPI_SEND = "https://api.z-api.io/instances/inst-1/token/tok-1/send-text"
CONFIG = {"instance_id": "inst-1", "instance_token": "tok-1", "client_token": "client-1"}


class TestZApiConnector:

    @pytest.mark.asyncio
    async def test_send_text_normalizes_phone(self, respx_mock):
        # Arrange
        route = respx_mock.post(ZAPI_SEND).mock(return_value=httpx.Response(200, json={"messageId": "msg-1"}))

        # Act
        result = await ZApiConnector.from_config(CONFIG).send_text("(11) 98765-4321", "Olá")

        # Assert
        assert result.success is True
        assert result.message_id == "msg-1"
        request = route.calls.last.request
        assert request.headers["Client-Token"] == "client-1"
        assert json.loads(request.content) == {"phone": "5511987654321", "message": "Olá"}

    @pytest.mark.asyncio
    async def test_no_phone(self, respx_mock):
        result = await ZApiConnector.from_config(CONFIG).send_text(None, "Olá")

        assert result.success is False
        assert result.error == "no_phone_number_configured"

    @pytest.mark.asyncio
    async def test_error_in_200_body(self, respx_mock):
        respx_mock.post(ZAPI_SEND).mock(return_value=httpx.Response(200, json={"error": "Instance not connected"}))

        result = await ZApiConnector.from_config(CONFIG).send_text("11987654321", "Olá")

        assert result.success is False
        assert result.error == "Instance not connected"

    @pytest.mark.asyncio
    async def test_http_error_status(self, respx_mock):
        respx_mock.post(ZAPI_SEND).mock(return_value=httpx.Response(500, text="oops"))

        result = await ZApiConnector.from_config(CONFIG).send_text("11987654321", "Olá")

        assert result.error == "HTTP 500"


class TestSendGridConnector:

    @pytest.mark.asyncio
    async def test_send_returns_message_id(self, respx_mock):
        route = respx_mock.post("https://api.sendgrid.com/v3/mail/send").mock(
            return_value=httpx.Response(202, headers={"X-Message-Id": "sg-1"})
        )

        result = await SendGridConnector("sg-key").send(
            "cliente@email.com", "Pedido confirmado", "<p>Oi</p>",
            "loja@loja.com.br", "Loja", reply_to="contato@loja.com.br"
        )

        assert result.success is True
        assert result.message_id == "sg-1"
        body = json.loads(route.calls.last.request.content)
        assert body["personalizations"] == [{"to": [{"email": "cliente@email.com"}]}]
        assert body["from"] == {"email": "loja@loja.com.br", "name": "Loja"}
        assert body["reply_to"] == {"email": "contato@loja.com.br"}
        assert route.calls.last.request.headers["Authorization"] == "Bearer sg-key"

    @pytest.mark.asyncio
    async def test_send_failure(self, respx_mock):
        respx_mock.post("https://api.sendgrid.com/v3/mail/send").mock(
            return_value=httpx.Response(403, text="The from address does not match a verified Sender Identity")
        )

        result = await SendGridConnector("sg-key").send("a@b.com", "s", "h", "x@y.com", "X")

        assert result.success is False
        assert result.error.startswith("SendGrid error: 403")


class TestPagarmeConnector:

    @pytest.mark.asyncio
    async def test_create_order(self, respx_mock):
        route = respx_mock.post("https://api.pagar.me/core/v5/orders").mock(
            return_value=httpx.Response(200, json={"id": "or_1", "charges": [{"id": "ch_1", "status": "pending"}]})
        )

        result = await PagarmeConnector("sk_test").create_order({"items": []})

        assert result.success is True
        assert result.data["id"] == "or_1"
        assert route.calls.last.request.headers["Authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_create_order_error_message(self, respx_mock):
        respx_mock.post("https://api.pagar.me/core/v5/orders").mock(
            return_value=httpx.Response(422, json={"message": "The request is invalid."})
        )

        result = await PagarmeConnector("sk_test").create_order({})

        assert result.success is False
        assert result.error == "The request is invalid."
