"""
Unit tests for PaymentService (Pagar.me charges and webhooks)

Author: Backoffice API team
Date: 2026-02-16
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from backoffice.connectors.pagarme_connector import PagarmeResult
from backoffice.core.errors import IntegrationError, ValidationError
from backoffice.domain.payment import BillingAddress, CardData, ChargeCreate, ChargeCustomer, PaymentTransaction
from backoffice.services import payment_service
from backoffice.services.payment_service import PaymentService, build_order_payload

TENANT = "11111111-1111-1111-1111-111111111111"
NOW = datetime(2026, 2, 16, 10, 0, tzinfo=timezone.utc)

CUSTOMER = ChargeCustomer(name="Maria Silva", email="maria@loja.com.br", document="123.456.789-09",
                          phone="(11) 99999-8888")

PAGARME_ORDER = {
    'id': "or_abc",
    'charges': [{
        'id': "ch_1", 'status': "pending",
        'last_transaction': {'qr_code': "00020126...", 'qr_code_url': "https://pix/qr.png"},
    }],
}


def charge(method="pix", **overrides) -> ChargeCreate:
    data = {'method': method, 'amount': 15000, 'order_id': "order-1", 'customer': CUSTOMER}
    data.update(overrides)
    return ChargeCreate(**data)


@pytest.fixture
def repo():
    repo = MagicMock()
    repo.get_provider.return_value = {
        'credentials': {'api_key': "sk_tenant", 'account_id': "acc_1"},
        'environment': "production", 'is_enabled': True,
    }
    repo.is_method_enabled.return_value = True
    repo.insert_transaction.return_value = PaymentTransaction(
        id="tx-1", tenant_id=TENANT, method="pix", status="pending", amount=15000
    )
    repo.find_order_summary.return_value = {'order_number': "1001", 'customer_name': "Maria Silva", 'total': 150}
    return repo


@pytest.fixture
def connector():
    connector = MagicMock()
    connector.create_order = AsyncMock(return_value=PagarmeResult(success=True, data=PAGARME_ORDER))
    return connector


@pytest.fixture
def events():
    return MagicMock()


@pytest.fixture
def service(repo, events, connector):
    return PaymentService(repo=repo, events=events, connector_factory=lambda api_key: connector)


class TestBuildOrderPayload:

    def test_pix(self):
        payload = build_order_payload(charge(), TENANT, "order-1", "database", NOW)

        assert payload['customer']['document'] == "12345678909"
        assert payload['customer']['phones']['mobile_phone'] == {
            'country_code': "55", 'area_code': "11", 'number': "999998888",
        }
        assert payload['payments'] == [{'payment_method': "pix", 'pix': {'expires_in': 3600}}]
        assert payload['items'][0]['code'] == "order-1"
        assert payload['metadata']['credential_source'] == "database"

    def test_boleto_due_in_three_days(self):
        payload = build_order_payload(charge("boleto"), TENANT, "order-1234567890abcdef", "database", NOW)

        boleto = payload['payments'][0]['boleto']
        assert boleto['due_at'] == "2026-02-19T10:00:00+00:00"
        assert boleto['document_number'] == "order-1234567890"

    def test_card_with_billing_address(self):
        data = charge(
            "credit_card", installments=3,
            card=CardData(number="4111 1111 1111 1111", holder_name="MARIA SILVA", exp_month=12, exp_year=2030, cvv="123"),
            billing_address=BillingAddress(street="Av. Paulista", number="1000", neighborhood="Bela Vista",
                                           city="São Paulo", state="SP", postal_code="01310-100"),
        )

        payload = build_order_payload(data, TENANT, "order-1", "fallback", NOW)

        credit_card = payload['payments'][0]['credit_card']
        assert credit_card['installments'] == 3
        assert credit_card['card']['number'] == "4111111111111111"
        assert credit_card['card']['billing_address']['line_1'] == "1000, Av. Paulista"
        assert credit_card['card']['billing_address']['zip_code'] == "01310100"

    def test_card_required(self):
        with pytest.raises(ValidationError):
            build_order_payload(charge("credit_card"), TENANT, "order-1", "database", NOW)


class TestCredentials:

    def test_tenant_provider(self, service):
        credentials = service.get_credentials(TENANT)

        assert credentials == {
            'api_key': "sk_tenant", 'account_id': "acc_1", 'environment': "production", 'source': "database",
        }

    def test_platform_fallback(self, service, repo, monkeypatch):
        repo.get_provider.return_value = {'credentials': {'api_key': "sk_x"}, 'is_enabled': False}
        monkeypatch.setattr(payment_service.settings, "PAGARME_API_KEY", "sk_platform")

        credentials = service.get_credentials(TENANT)

        assert credentials['api_key'] == "sk_platform"
        assert credentials['source'] == "fallback"
        assert credentials['environment'] == "sandbox"

    def test_not_configured(self, service, repo, monkeypatch):
        repo.get_provider.return_value = None
        monkeypatch.setattr(payment_service.settings, "PAGARME_API_KEY", None)

        with pytest.raises(ValidationError):
            service.get_credentials(TENANT)


class TestCreateCharge:

    @pytest.mark.asyncio
    async def test_pix_charge(self, service, repo, events, tenant_ctx):
        # Act
        result = await service.create_charge(tenant_ctx, charge())

        # Assert
        assert result['success'] is True
        assert result['transaction_id'] == "tx-1"
        assert result['provider_id'] == "or_abc"
        assert result['payment_data']['qr_code_url'] == "https://pix/qr.png"
        stored = repo.insert_transaction.call_args[0][1]
        assert stored['provider_transaction_id'] == "or_abc"
        assert stored['status'] == "pending"
        payload = events.emit.call_args[0][2]
        assert payload['new_status'] == "pix_generated"
        assert payload['order_number'] == "1001"
        assert events.emit.call_args[1]['idempotency_key'] == "payment_pix_generated_order-1_or_abc"

    @pytest.mark.asyncio
    async def test_card_charge_emits_nothing(self, service, events, tenant_ctx):
        data = charge("credit_card", card=CardData(
            number="4111111111111111", holder_name="M", exp_month=1, exp_year=2030, cvv="123"
        ))

        await service.create_charge(tenant_ctx, data)

        events.emit.assert_not_called()

    @pytest.mark.asyncio
    async def test_disabled_method(self, service, repo, connector, tenant_ctx):
        repo.is_method_enabled.return_value = False

        with pytest.raises(ValidationError):
            await service.create_charge(tenant_ctx, charge("boleto"))

        connector.create_order.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_method(self, service, tenant_ctx):
        with pytest.raises(ValidationError):
            await service.create_charge(tenant_ctx, charge("cheque"))

    @pytest.mark.asyncio
    async def test_gateway_error(self, service, repo, connector, tenant_ctx):
        connector.create_order.return_value = PagarmeResult(success=False, error="customer.document is invalid")

        with pytest.raises(IntegrationError) as exc:
            await service.create_charge(tenant_ctx, charge())

        assert exc.value.message == "customer.document is invalid"
        repo.insert_transaction.assert_not_called()


class TestWebhook:

    def webhook(self, status="paid", event_id="hook_1", order_id="or_abc"):
        return {
            'id': event_id, 'type': f"order.{status}",
            'data': {'id': order_id, 'charges': [{'status': status, 'amount': 15000, 'paid_amount': 15000}]},
        }

    @pytest.fixture
    def transaction(self):
        return {'id': "tx-1", 'tenant_id': TENANT, 'order_id': "order-1", 'status': "pending", 'amount': 15000}

    def test_paid(self, service, repo, transaction):
        # Arrange
        repo.event_exists.return_value = False
        repo.find_transaction_by_provider_id.return_value = transaction
        repo.apply_webhook.return_value = True

        # Act
        result = service.handle_webhook(self.webhook())

        # Assert
        assert result['previous_status'] == "pending"
        assert result['new_status'] == "paid"
        assert result['payment_status'] == "approved"
        args, kwargs = repo.apply_webhook.call_args
        assert args[1].paid is True
        assert args[2] == "hook_1"
        assert kwargs['paid_amount'] == 15000

    def test_duplicate_event(self, service, repo):
        repo.event_exists.return_value = True

        result = service.handle_webhook(self.webhook())

        assert result == {'received': True, 'message': "Event already processed", 'event_id': "hook_1"}
        repo.apply_webhook.assert_not_called()

    def test_without_order_id(self, service, repo):
        result = service.handle_webhook({'type': "charge.paid", 'data': {}})

        assert result == {'received': True, 'message': "No order ID"}
        repo.event_exists.assert_not_called()

    def test_unknown_transaction(self, service, repo):
        repo.event_exists.return_value = False
        repo.find_transaction_by_provider_id.return_value = None

        result = service.handle_webhook(self.webhook())

        assert result['message'] == "Transaction not found"
        assert result['pagarme_order_id'] == "or_abc"

    def test_concurrent_delivery(self, service, repo, transaction):
        repo.event_exists.return_value = False
        repo.find_transaction_by_provider_id.return_value = transaction
        repo.apply_webhook.return_value = False

        result = service.handle_webhook(self.webhook())

        assert result['message'] == "Concurrent processing"
        assert 'new_status' not in result

    def test_failed_update_is_retried_on_redelivery(self, service, repo, transaction):
        """A failed apply leaves no event row behind, so the retry is processed"""
        # Arrange
        repo.event_exists.return_value = False
        repo.find_transaction_by_provider_id.return_value = transaction
        repo.apply_webhook.side_effect = [Exception("deadlock detected"), True]

        # Act
        with pytest.raises(Exception):
            service.handle_webhook(self.webhook())
        result = service.handle_webhook(self.webhook())

        # Assert
        assert result['new_status'] == "paid"
        assert repo.apply_webhook.call_count == 2
        assert repo.apply_webhook.call_args[0][3] == "order.paid"

    def test_unknown_status_keeps_transaction_status(self, service, repo, transaction):
        repo.event_exists.return_value = False
        repo.find_transaction_by_provider_id.return_value = transaction
        repo.apply_webhook.return_value = True

        result = service.handle_webhook(self.webhook(status="authorized_pending_capture"))

        assert result['new_status'] == "pending"
        assert result['payment_status'] is None
        assert repo.apply_webhook.call_args[0][1] is None
        assert repo.apply_webhook.call_args[1]['paid_amount'] is None
