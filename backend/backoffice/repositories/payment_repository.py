"""
Payment Repository - payment_providers, payment_methods, payment_transactions,
payment_events

Author: Backoffice API team
Date: 2026-02-16
"""
from datetime import datetime
from typing import Any, Dict, Optional

from backoffice.core.database import get_db_connection_dict
from backoffice.domain.payment import PaymentTransaction, StatusTransition
from backoffice.repositories.event_repository import to_json

TRANSACTION_COLUMNS = """
    id, tenant_id, order_id, provider, provider_transaction_id, method, status,
    amount, currency, payment_data, paid_at, paid_amount, created_at
"""


class PaymentRepository:
    """Repository for payment data access"""

    def _fetch_one(self, query: str, params: tuple) -> Optional[Dict[str, Any]]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(query, params)
            row = cursor.fetchone()
            return dict(row) if row else None

        finally:
            cursor.close()
            conn.close()

    def get_provider(self, tenant_id: str, provider: str = "pagarme") -> Optional[Dict[str, Any]]:
        return self._fetch_one("""
            SELECT credentials, environment, is_enabled
            FROM payment_providers
            WHERE tenant_id = %s AND provider = %s
            LIMIT 1
        """, (tenant_id, provider))

    def is_method_enabled(self, tenant_id: str, method: str) -> bool:
        """Methods without a payment_methods row are enabled"""
        row = self._fetch_one("""
            SELECT is_enabled FROM payment_methods
            WHERE tenant_id = %s AND method = %s
            LIMIT 1
        """, (tenant_id, method))
        return True if row is None else bool(row['is_enabled'])

    def find_order_summary(self, tenant_id: str, order_id: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one("""
            SELECT order_number, customer_name, customer_email, customer_phone, total
            FROM orders
            WHERE id = %s AND tenant_id = %s
        """, (order_id, tenant_id))

    def insert_transaction(self, tenant_id: str, data: Dict[str, Any]) -> PaymentTransaction:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                INSERT INTO payment_transactions (
                    tenant_id, order_id, provider, provider_transaction_id, method,
                    status, amount, currency, payment_data
                ) VALUES (%s, %s, 'pagarme', %s, %s, %s, %s, 'BRL', %s)
                RETURNING {TRANSACTION_COLUMNS}
            """, (
                tenant_id, data.get('order_id'), data['provider_transaction_id'],
                data['method'], data['status'], data['amount'], to_json(data['payment_data'])
            ))
            row = cursor.fetchone()
            conn.commit()
            return PaymentTransaction(**row)

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    # =========================================================================
    # Webhooks
    # =========================================================================

    def event_exists(self, event_id: str, provider: str = "pagarme") -> bool:
        return self._fetch_one("""
            SELECT id FROM payment_events WHERE provider = %s AND event_id = %s
        """, (provider, event_id)) is not None

    def find_transaction_by_provider_id(self, provider_transaction_id: str) -> Optional[Dict[str, Any]]:
        """Raw row, includes checkout_id"""
        return self._fetch_one(f"""
            SELECT {TRANSACTION_COLUMNS}, checkout_id
            FROM payment_transactions
            WHERE provider_transaction_id = %s
            LIMIT 1
        """, (provider_transaction_id,))

    def apply_webhook(self, transaction: Dict[str, Any], transition: Optional[StatusTransition],
                      event_id: str, event_type: str, payload: Dict[str, Any], now: datetime,
                      paid_amount: Optional[int] = None) -> bool:
        """
        Record the event and update transaction, order and checkout in one
        database transaction.

        The payment_events insert is the idempotency gate: if any update fails
        the insert rolls back too, so a redelivery of the same event_id is
        processed again instead of being skipped.

        Returns:
            False when another request already recorded this event_id
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO payment_events (
                    tenant_id, provider, event_id, provider_payment_id, event_type,
                    payload, received_at, processed_at, processing_result
                ) VALUES (%s, 'pagarme', %s, %s, %s, %s, %s, %s, 'success')
                ON CONFLICT (provider, event_id) DO NOTHING
                RETURNING id
            """, (
                transaction['tenant_id'], event_id, transaction.get('provider_transaction_id'),
                event_type, to_json(payload), now, now
            ))
            if cursor.fetchone() is None:
                conn.rollback()
                return False

            paid_at = now if transition and transition.paid else None
            cursor.execute("""
                UPDATE payment_transactions
                SET status = %s,
                    webhook_payload = %s,
                    paid_at = COALESCE(%s, paid_at),
                    paid_amount = COALESCE(%s, paid_amount),
                    updated_at = %s
                WHERE id = %s
            """, (
                transition.transaction if transition else transaction['status'],
                to_json(payload), paid_at, paid_amount if paid_at else None, now,
                transaction['id']
            ))

            if transaction.get('order_id') and transition:
                cursor.execute("""
                    UPDATE orders
                    SET payment_status = %s,
                        status = COALESCE(%s, status),
                        paid_at = COALESCE(%s, paid_at),
                        updated_at = %s
                    WHERE id = %s
                """, (transition.payment, transition.order, paid_at, now, transaction['order_id']))

            if transaction.get('checkout_id') and transition and transition.transaction == "paid":
                cursor.execute("""
                    UPDATE checkouts SET status = 'completed', completed_at = %s
                    WHERE id = %s
                """, (now, transaction['checkout_id']))

            conn.commit()
            return True

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()
