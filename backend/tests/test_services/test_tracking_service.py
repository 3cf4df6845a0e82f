"""
Unit tests for TrackingService (registration and carrier polling)

Author: Backoffice API team
Date: 2026-02-12
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from backoffice.connectors.tracking_result import TrackingResult
from backoffice.core.errors import NotFoundError
from backoffice.domain.shipment import Shipment, ShipmentCreate, TrackingEvent
from backoffice.services.tracking_service import TrackingService, infer_carrier, normalize_carrier

TENANT = "tenant-1"
NOW = datetime(2026, 2, 12, 12, 0, tzinfo=timezone.utc)
INTERVAL = 30

CORREIOS_PROVIDER = {'provider': "correios", 'is_enabled': True, 'supports_tracking': True, 'credentials': {}}


def make_shipment(**overrides) -> Shipment:
    data = {
        'id': "ship-1", 'tenant_id': TENANT, 'order_id': "order-1",
        'tracking_code': "AA123456789BR", 'carrier': "Correios", 'delivery_status': "posted",
    }
    data.update(overrides)
    return Shipment(**data)


def build_service(shipments=None, provider=CORREIOS_PROVIDER, adapter=None):
    repo = MagicMock()
    repo.find_due_for_polling.return_value = shipments or []
    integrations = MagicMock()
    integrations.get_shipping_provider.return_value = provider
    events = MagicMock()
    service = TrackingService(
        repo=repo, integrations=integrations, events=events,
        adapter_factory=lambda carrier, tenant_id, prov: adapter,
        poll_interval_minutes=INTERVAL, max_per_run=50,
    )
    return service, repo, integrations, events


def adapter_returning(result: TrackingResult):
    adapter = MagicMock()
    adapter.fetch_events = AsyncMock(return_value=result)
    return adapter


class TestCarrierResolution:

    @pytest.mark.parametrize("code,expected", [
        ("AA123456789BR", "correios"),
        (" aa123456789br ", "correios"),
        ("BLI0001234", "loggi"),
        ("XPTO", "unknown"),
        (None, "unknown"),
    ])
    def test_infer_carrier(self, code, expected):
        assert infer_carrier(code) == expected

    def test_normalize_carrier(self):
        assert normalize_carrier("Correios SEDEX", None) == "correios"
        assert normalize_carrier("LOGGI", None) == "loggi"
        assert normalize_carrier("", "BLI0001") == "loggi"
        assert normalize_carrier("Jadlog", "X") == "jadlog"


class TestRegisterShipment:

    def test_returns_existing(self, tenant_ctx):
        service, repo, _, _ = build_service()
        repo.find_by_tracking_code.return_value = make_shipment()

        shipment = service.register_shipment(tenant_ctx, ShipmentCreate(order_id="order-1", tracking_code="aa123456789br"))

        assert shipment.id == "ship-1"
        assert repo.find_by_tracking_code.call_args[0][2] == "AA123456789BR"
        repo.insert.assert_not_called()

    def test_unknown_order(self, tenant_ctx):
        service, repo, _, _ = build_service()
        repo.find_by_tracking_code.return_value = None
        repo.order_exists.return_value = False

        with pytest.raises(NotFoundError):
            service.register_shipment(tenant_ctx, ShipmentCreate(order_id="x", tracking_code="AA123456789BR"))


class TestPoll:

    @pytest.mark.asyncio
    async def test_nothing_due(self):
        service, _, _, _ = build_service()

        result = await service.poll(now=NOW)

        assert result.to_dict()['message'] == "No shipments to poll"

    @pytest.mark.asyncio
    async def test_status_change_emits_event(self):
        # Arrange
        events_found = [
            TrackingEvent(provider_event_id="e1", status="in_transit", occurred_at=NOW - timedelta(days=2)),
            TrackingEvent(provider_event_id="e2", status="delivered", occurred_at=NOW - timedelta(hours=1)),
        ]
        adapter = adapter_returning(TrackingResult(success=True, events=events_found))
        service, repo, _, events = build_service([make_shipment()], adapter=adapter)

        # Act
        result = await service.poll(now=NOW)

        # Assert
        assert result.stats.processed == 1
        assert result.stats.updated == 1
        args, kwargs = repo.apply_tracking.call_args
        assert args[2] == "delivered"
        assert args[3] == NOW - timedelta(hours=1)
        assert kwargs['next_poll_at'] == NOW + timedelta(minutes=INTERVAL)
        payload = events.emit.call_args[0][2]
        assert (payload['old_status'], payload['new_status']) == ("posted", "delivered")
        assert events.emit.call_args[1]['idempotency_key'] == "shipment_status_ship-1_posted_delivered"

    @pytest.mark.asyncio
    async def test_same_status_no_event(self):
        adapter = adapter_returning(TrackingResult(success=True, events=[
            TrackingEvent(provider_event_id="e1", status="posted", occurred_at=NOW),
        ]))
        service, _, _, events = build_service([make_shipment()], adapter=adapter)

        result = await service.poll(now=NOW)

        assert result.stats.updated == 0
        events.emit.assert_not_called()

    @pytest.mark.asyncio
    async def test_adapter_failure_backs_off(self):
        """Third consecutive failure: interval * 2^3"""
        adapter = adapter_returning(TrackingResult(success=False, error="api_error_503"))
        service, repo, _, _ = build_service([make_shipment(poll_error_count=2)], adapter=adapter)

        result = await service.poll(now=NOW)

        assert result.stats.errors == 1
        args, kwargs = repo.update_poll_state.call_args
        assert args[2] == NOW + timedelta(minutes=INTERVAL * 8)
        assert kwargs == {'last_poll_error': "api_error_503", 'poll_error_count': 3}

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self):
        adapter = adapter_returning(TrackingResult(success=False, error="timeout"))
        service, repo, _, _ = build_service([make_shipment(poll_error_count=8)], adapter=adapter)

        await service.poll(now=NOW)

        assert repo.update_poll_state.call_args[0][2] == NOW + timedelta(minutes=INTERVAL * 32)

    @pytest.mark.asyncio
    async def test_disabled_provider_skips_with_longer_wait(self):
        service, repo, integrations, _ = build_service(
            [make_shipment(), make_shipment(id="ship-2")],
            provider={**CORREIOS_PROVIDER, 'is_enabled': False},
        )

        result = await service.poll(now=NOW)

        assert result.stats.noAdapter == 2
        assert integrations.get_shipping_provider.call_count == 1
        args = repo.record_skip.call_args[0]
        assert args[1] == "provider_disabled"
        assert args[3] == NOW + timedelta(minutes=INTERVAL * 4)

    @pytest.mark.asyncio
    async def test_unknown_carrier_skipped(self):
        service, repo, integrations, _ = build_service([make_shipment(carrier=None, tracking_code="XPTO1234")])

        await service.poll(now=NOW)

        assert repo.record_skip.call_args[0][1] == "carrier_unknown"
        integrations.get_shipping_provider.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_adapter_counts_and_resets(self):
        service, repo, _, _ = build_service([make_shipment()], adapter=None)

        result = await service.poll(now=NOW)

        assert result.stats.noAdapter == 1
        assert repo.update_poll_state.call_args[1] == {'last_poll_error': "no_provider_adapter", 'poll_error_count': 0}

    @pytest.mark.asyncio
    async def test_unexpected_error_isolated(self):
        adapter = MagicMock()
        adapter.fetch_events = AsyncMock(side_effect=[RuntimeError("boom"), TrackingResult(success=True)])
        service, _, _, _ = build_service([make_shipment(), make_shipment(id="ship-2")], adapter=adapter)

        result = await service.poll(now=NOW)

        assert result.stats.errors == 1
        assert result.stats.processed == 1
