"""
Notification Repository - notifications, notification_attempts, notification_logs

Author: Backoffice API team
Date: 2026-02-15
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from backoffice.core.database import get_db_connection_dict
from backoffice.domain.notification import Notification
from backoffice.repositories.event_repository import to_json

NOTIFICATION_COLUMNS = """
    id, tenant_id, channel, recipient, template_key, rule_id, payload, status,
    scheduled_for, next_attempt_at, attempt_count, max_attempts,
    last_attempt_at, last_error, sent_at
"""

LOG_COLUMNS = (
    'tenant_id', 'notification_id', 'rule_id', 'rule_type', 'channel', 'order_id',
    'customer_id', 'recipient', 'status', 'scheduled_for', 'sent_at',
    'content_preview', 'attempt_count', 'error_message',
)


class NotificationRepository:
    """Repository for the notification queue"""

    def _execute(self, query: str, params: tuple) -> int:
        """Run a write and return the affected row count"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(query, params)
            count = cursor.rowcount
            conn.commit()
            return count

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def find_template(self, tenant_id: str, template_key: str) -> Optional[Dict[str, Any]]:
        """Tenant template first, platform default (tenant_id NULL) second"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT template_key, subject, body
                FROM email_templates
                WHERE template_key = %s AND (tenant_id = %s OR tenant_id IS NULL)
                  AND is_active = true
                ORDER BY tenant_id NULLS LAST
                LIMIT 1
            """, (template_key, tenant_id))
            row = cursor.fetchone()
            return dict(row) if row else None

        finally:
            cursor.close()
            conn.close()

    def insert(self, tenant_id: str, channel: str, recipient: str, template_key: Optional[str],
               payload: Dict[str, Any], scheduled_for: datetime, max_attempts: int) -> Notification:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                INSERT INTO notifications (
                    tenant_id, channel, recipient, template_key, payload, status,
                    scheduled_for, next_attempt_at, attempt_count, max_attempts
                ) VALUES (%s, %s, %s, %s, %s, 'scheduled', %s, %s, 0, %s)
                RETURNING {NOTIFICATION_COLUMNS}
            """, (
                tenant_id, channel, recipient, template_key, to_json(payload),
                scheduled_for, scheduled_for, max_attempts
            ))
            row = cursor.fetchone()
            conn.commit()
            return Notification(**row)

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    # =========================================================================
    # Runner
    # =========================================================================

    def unstick(self, older_than: datetime, tenant_id: Optional[str] = None) -> int:
        """Put notifications left in 'sending' by a crashed run back in the queue"""
        query = """
            UPDATE notifications SET status = 'retrying'
            WHERE status = 'sending' AND last_attempt_at < %s
        """
        params = [older_than]
        if tenant_id:
            query += " AND tenant_id = %s"
            params.append(tenant_id)
        return self._execute(query, tuple(params))

    def find_due(self, now: datetime, limit: int, tenant_id: Optional[str] = None) -> List[Notification]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            query = f"""
                SELECT {NOTIFICATION_COLUMNS}
                FROM notifications
                WHERE status IN ('scheduled', 'retrying')
                  AND next_attempt_at <= %s
            """
            params = [now]
            if tenant_id:
                query += " AND tenant_id = %s"
                params.append(tenant_id)
            query += " ORDER BY next_attempt_at ASC LIMIT %s"
            params.append(limit)

            cursor.execute(query, tuple(params))
            return [Notification(**row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def claim(self, ids: List[str], now: datetime) -> List[str]:
        """
        Mark as 'sending' and return the ids this run actually took.

        Rows already taken by another run are left alone and not returned.
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE notifications
                SET status = 'sending', last_attempt_at = %s
                WHERE id = ANY(%s) AND status IN ('scheduled', 'retrying')
                RETURNING id
            """, (now, list(ids)))
            claimed = [str(row['id']) for row in cursor.fetchall()]
            conn.commit()
            return claimed

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def create_attempt(self, notification: Notification, attempt_no: int, started_at: datetime) -> str:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO notification_attempts (tenant_id, notification_id, attempt_no, status, started_at)
                VALUES (%s, %s, %s, 'pending', %s)
                RETURNING id
            """, (notification.tenant_id, notification.id, attempt_no, started_at))
            row = cursor.fetchone()
            conn.commit()
            return str(row['id'])

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def finish_attempt(self, attempt_id: str, status: str, finished_at: datetime,
                       error_message: Optional[str] = None,
                       provider_response: Optional[Dict[str, Any]] = None) -> None:
        self._execute("""
            UPDATE notification_attempts
            SET status = %s, finished_at = %s, error_code = %s, error_message = %s,
                provider_response = %s
            WHERE id = %s
        """, (
            status, finished_at,
            "SEND_FAILED" if status == "error" else None,
            error_message,
            to_json(provider_response) if provider_response is not None else None,
            attempt_id
        ))

    def mark_sent(self, notification_id: str, attempt_no: int, sent_at: datetime) -> None:
        self._execute("""
            UPDATE notifications
            SET status = 'sent', sent_at = %s, attempt_count = %s, last_error = NULL
            WHERE id = %s
        """, (sent_at, attempt_no, notification_id))

    def mark_failed(self, notification_id: str, attempt_no: int, error: str) -> None:
        self._execute("""
            UPDATE notifications
            SET status = 'failed', attempt_count = %s, last_error = %s
            WHERE id = %s
        """, (attempt_no, error, notification_id))

    def schedule_retry(self, notification_id: str, attempt_no: int, error: str, next_attempt_at: datetime) -> None:
        self._execute("""
            UPDATE notifications
            SET status = 'retrying', attempt_count = %s, last_error = %s, next_attempt_at = %s
            WHERE id = %s
        """, (attempt_no, error, next_attempt_at, notification_id))

    def upsert_log(self, log: Dict[str, Any]) -> None:
        """One notification_logs row per notification, overwritten on each attempt"""
        values = [log.get(column) for column in LOG_COLUMNS]
        updates = ", ".join(
            f"{column} = EXCLUDED.{column}" for column in LOG_COLUMNS if column != 'notification_id'
        )
        self._execute(f"""
            INSERT INTO notification_logs ({', '.join(LOG_COLUMNS)})
            VALUES ({', '.join(['%s'] * len(LOG_COLUMNS))})
            ON CONFLICT (notification_id) DO UPDATE SET {updates}
        """, tuple(values))
