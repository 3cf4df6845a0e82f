"""
Shipment Repository - Data Access Layer for shipments and tracking events

Author: Backoffice API team
Date: 2026-02-12
"""
from datetime import datetime
from typing import List, Optional

from backoffice.core.database import get_db_connection_dict
from backoffice.domain.shipment import (
    FINAL_STATUSES, Shipment, ShipmentEventRecord, TrackingEvent, shipping_status_for,
)

SHIPMENT_COLUMNS = """
    id, tenant_id, order_id, tracking_code, carrier, delivery_status,
    last_status_at, delivered_at, last_polled_at, next_poll_at,
    poll_error_count, last_poll_error, created_at
"""


class ShipmentRepository:
    """Repository for shipments and shipment_events"""

    def find_by_id(self, tenant_id: str, shipment_id: str) -> Optional[Shipment]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {SHIPMENT_COLUMNS}
                FROM shipments
                WHERE id = %s AND tenant_id = %s
            """, (shipment_id, tenant_id))
            row = cursor.fetchone()
            return Shipment(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_by_tracking_code(self, tenant_id: str, order_id: str, tracking_code: str) -> Optional[Shipment]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {SHIPMENT_COLUMNS}
                FROM shipments
                WHERE tenant_id = %s AND order_id = %s AND tracking_code = %s
                LIMIT 1
            """, (tenant_id, order_id, tracking_code))
            row = cursor.fetchone()
            return Shipment(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def order_exists(self, tenant_id: str, order_id: str) -> bool:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT 1 FROM orders WHERE id = %s AND tenant_id = %s", (order_id, tenant_id))
            return cursor.fetchone() is not None

        finally:
            cursor.close()
            conn.close()

    def insert(self, tenant_id: str, order_id: str, tracking_code: str, carrier: Optional[str],
               now: datetime) -> Shipment:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                INSERT INTO shipments (
                    tenant_id, order_id, tracking_code, carrier,
                    delivery_status, next_poll_at, poll_error_count
                ) VALUES (%s, %s, %s, %s, 'label_created', %s, 0)
                RETURNING {SHIPMENT_COLUMNS}
            """, (tenant_id, order_id, tracking_code, carrier, now))
            row = cursor.fetchone()
            conn.commit()
            return Shipment(**row)

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def find_events(self, shipment_id: str) -> List[ShipmentEventRecord]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT id, shipment_id, status, description, location, occurred_at, provider_event_id
                FROM shipment_events
                WHERE shipment_id = %s
                ORDER BY occurred_at DESC
            """, (shipment_id,))
            return [ShipmentEventRecord(**row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    # =========================================================================
    # Polling
    # =========================================================================

    def find_due_for_polling(self, now: datetime, limit: int, max_error_count: int) -> List[Shipment]:
        """Active shipments with a tracking code whose next_poll_at has passed"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {SHIPMENT_COLUMNS}
                FROM shipments
                WHERE delivery_status <> ALL(%s)
                  AND tracking_code IS NOT NULL
                  AND (next_poll_at IS NULL OR next_poll_at <= %s)
                  AND poll_error_count < %s
                ORDER BY next_poll_at ASC NULLS FIRST
                LIMIT %s
            """, (list(FINAL_STATUSES), now, max_error_count, limit))
            return [Shipment(**row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def update_poll_state(self, shipment_id: str, polled_at: datetime, next_poll_at: datetime,
                          last_poll_error: Optional[str], poll_error_count: Optional[int] = None) -> None:
        """Reschedule a shipment. poll_error_count=None keeps the stored counter."""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE shipments
                SET last_polled_at = %s,
                    next_poll_at = %s,
                    last_poll_error = %s,
                    poll_error_count = COALESCE(%s, poll_error_count)
                WHERE id = %s
            """, (polled_at, next_poll_at, last_poll_error, poll_error_count, shipment_id))
            conn.commit()

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def record_skip(self, shipment: Shipment, reason: str, now: datetime, next_poll_at: datetime) -> None:
        """Reschedule a shipment whose provider cannot be polled and leave an audit event"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE shipments
                SET last_polled_at = %s, next_poll_at = %s, last_poll_error = %s
                WHERE id = %s
            """, (now, next_poll_at, reason, shipment.id))
            cursor.execute("""
                INSERT INTO shipment_events (
                    tenant_id, shipment_id, status, description, occurred_at, provider_event_id
                ) VALUES (%s, %s, %s, %s, %s, %s)
            """, (
                shipment.tenant_id, shipment.id, shipment.delivery_status,
                f"Polling skipped: {reason}", now,
                f"skip_{shipment.id}_{int(now.timestamp() * 1000)}"
            ))
            conn.commit()

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def apply_tracking(self, shipment: Shipment, events: List[TrackingEvent], status: str,
                       status_at: datetime, now: datetime, next_poll_at: datetime) -> int:
        """
        Store new events, update the shipment and its order in one transaction.

        Events already stored for the shipment (same provider_event_id) are
        skipped.

        Returns:
            Number of events inserted
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            inserted = 0
            for event in events:
                cursor.execute("""
                    INSERT INTO shipment_events (
                        tenant_id, shipment_id, status, description, location,
                        occurred_at, provider_event_id
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (shipment_id, provider_event_id) DO NOTHING
                """, (
                    shipment.tenant_id, shipment.id, event.status, event.description,
                    event.location or None, event.occurred_at, event.provider_event_id
                ))
                inserted += cursor.rowcount

            delivered_at = status_at if status == "delivered" else None

            cursor.execute("""
                UPDATE shipments
                SET last_polled_at = %s,
                    next_poll_at = %s,
                    poll_error_count = 0,
                    last_poll_error = NULL,
                    delivery_status = %s,
                    last_status_at = %s,
                    delivered_at = COALESCE(%s, delivered_at)
                WHERE id = %s
            """, (now, next_poll_at, status, status_at, delivered_at, shipment.id))

            cursor.execute("""
                UPDATE orders
                SET shipping_status = %s,
                    delivered_at = COALESCE(%s, delivered_at)
                WHERE id = %s
            """, (shipping_status_for(status), delivered_at, shipment.order_id))

            conn.commit()
            return inserted

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()
