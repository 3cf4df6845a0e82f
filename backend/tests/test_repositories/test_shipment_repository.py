"""
Unit tests for ShipmentRepository and IntegrationRepository

Author: Backoffice API team
Date: 2026-02-12
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from backoffice.domain.shipment import FINAL_STATUSES, Shipment, TrackingEvent
from backoffice.repositories.integration_repository import IntegrationRepository, is_whatsapp_configured
from backoffice.repositories.shipment_repository import ShipmentRepository

TENANT = "tenant-1"
NOW = datetime(2026, 2, 12, 12, 0, tzinfo=timezone.utc)


def make_shipment(**overrides) -> Shipment:
    data = {
        'id': "ship-1", 'tenant_id': TENANT, 'order_id': "order-1",
        'tracking_code': "AA123456789BR", 'carrier': "Correios",
        'delivery_status': "in_transit",
    }
    data.update(overrides)
    return Shipment(**data)


class TestShipmentRepository:

    @patch('backoffice.repositories.shipment_repository.get_db_connection_dict')
    def test_insert_starts_as_label_created(self, mock_get_conn, mock_db):
        conn, cursor = mock_db
        mock_get_conn.return_value = conn
        cursor.fetchone.return_value = make_shipment(delivery_status="label_created").model_dump()

        shipment = ShipmentRepository().insert(TENANT, "order-1", "AA123456789BR", "Correios", now=NOW)

        assert shipment.delivery_status == "label_created"
        assert "'label_created'" in cursor.execute.call_args[0][0]
        assert cursor.execute.call_args[0][1] == (TENANT, "order-1", "AA123456789BR", "Correios", NOW)
        conn.commit.assert_called_once()

    @patch('backoffice.repositories.shipment_repository.get_db_connection_dict')
    def test_find_due_excludes_final_statuses(self, mock_get_conn, mock_db):
        conn, cursor = mock_db
        mock_get_conn.return_value = conn
        cursor.fetchall.return_value = [make_shipment().model_dump()]

        shipments = ShipmentRepository().find_due_for_polling(NOW, limit=50, max_error_count=10)

        assert len(shipments) == 1
        assert cursor.execute.call_args[0][1] == (list(FINAL_STATUSES), NOW, 10, 50)

    @patch('backoffice.repositories.shipment_repository.get_db_connection_dict')
    def test_apply_tracking_counts_inserted_and_updates_order(self, mock_get_conn, mock_db):
        """Duplicate events (rowcount 0) are not counted; order gets the mapped shipping status"""
        # Arrange
        conn, cursor = mock_db
        mock_get_conn.return_value = conn
        type(cursor).rowcount = 1
        events = [
            TrackingEvent(provider_event_id="e1", status="in_transit", occurred_at=NOW - timedelta(days=1)),
            TrackingEvent(provider_event_id="e2", status="delivered", occurred_at=NOW),
        ]

        # Act
        inserted = ShipmentRepository().apply_tracking(
            make_shipment(), events, "delivered", NOW, NOW, NOW + timedelta(minutes=30)
        )

        # Assert
        assert inserted == 2
        assert cursor.execute.call_count == 4
        shipment_params = cursor.execute.call_args_list[2][0][1]
        assert shipment_params[2] == "delivered"
        assert shipment_params[4] == NOW
        order_params = cursor.execute.call_args_list[3][0][1]
        assert order_params == ("delivered", NOW, "order-1")
        conn.commit.assert_called_once()

    @patch('backoffice.repositories.shipment_repository.get_db_connection_dict')
    def test_apply_tracking_rolls_back(self, mock_get_conn, mock_db):
        conn, cursor = mock_db
        mock_get_conn.return_value = conn
        cursor.execute.side_effect = Exception("deadlock detected")

        with pytest.raises(Exception):
            ShipmentRepository().apply_tracking(make_shipment(), [], "in_transit", NOW, NOW, NOW)

        conn.rollback.assert_called_once()

    @patch('backoffice.repositories.shipment_repository.get_db_connection_dict')
    def test_record_skip_writes_audit_event(self, mock_get_conn, mock_db):
        conn, cursor = mock_db
        mock_get_conn.return_value = conn

        ShipmentRepository().record_skip(make_shipment(), "provider_disabled", NOW, NOW + timedelta(hours=2))

        event_params = cursor.execute.call_args_list[1][0][1]
        assert event_params[3] == "Polling skipped: provider_disabled"
        assert event_params[5].startswith("skip_ship-1_")

    @patch('backoffice.repositories.shipment_repository.get_db_connection_dict')
    def test_update_poll_state_keeps_counter_when_none(self, mock_get_conn, mock_db):
        conn, cursor = mock_db
        mock_get_conn.return_value = conn

        ShipmentRepository().update_poll_state("ship-1", NOW, NOW, "fetch_error")

        assert "COALESCE(%s, poll_error_count)" in cursor.execute.call_args[0][0]
        assert cursor.execute.call_args[0][1][3] is None


class TestIntegrationRepository:

    @patch('backoffice.repositories.integration_repository.get_db_connection_dict')
    def test_get_shipping_provider(self, mock_get_conn, mock_db):
        conn, cursor = mock_db
        mock_get_conn.return_value = conn
        cursor.fetchone.return_value = {'provider': "correios", 'is_enabled': True, 'credentials': {}}

        provider = IntegrationRepository().get_shipping_provider(TENANT, "correios")

        assert provider['provider'] == "correios"
        assert cursor.execute.call_args[0][1] == (TENANT, "correios")

    def test_is_whatsapp_configured(self):
        config = {
            'is_enabled': True, 'instance_id': "i", 'instance_token': "t",
            'client_token': "c", 'connection_status': "connected",
        }

        assert is_whatsapp_configured(config) is True
        assert is_whatsapp_configured({**config, 'connection_status': "disconnected"}) is False
        assert is_whatsapp_configured({**config, 'client_token': None}) is False
        assert is_whatsapp_configured(None) is False
