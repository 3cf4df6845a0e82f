"""
Event Repository - events_inbox and core_audit_log writes

Both tables are append-only side channels: a failure here is logged and
never aborts the business operation that produced the event.

Author: Backoffice API team
Date: 2026-02-09
"""
import json
import logging
from typing import Any, Dict, List, Optional

from psycopg2.extras import Json

from backoffice.core.database import get_db_connection_dict

logger = logging.getLogger(__name__)


def to_json(value: Any) -> Json:
    """Wrap a dict for a jsonb column, dates and decimals become strings"""
    return Json(value, dumps=lambda v: json.dumps(v, default=str))


class EventRepository:
    """Writes domain events and audit trail rows"""

    def emit(
        self,
        tenant_id: str,
        event_type: str,
        payload: Dict[str, Any],
        idempotency_key: str,
        subject: Optional[str] = None,
        provider: str = "internal"
    ) -> bool:
        """
        Insert an event into events_inbox.

        Duplicate idempotency keys are ignored (ON CONFLICT DO NOTHING).

        Returns:
            True when a new row was written
        """
        try:
            conn = get_db_connection_dict()
        except Exception as e:
            logger.error(f"Event emit error ({event_type}): {e}")
            return False

        cursor = conn.cursor()
        try:
            cursor.execute("""
                INSERT INTO events_inbox (
                    tenant_id, provider, event_type, subject,
                    idempotency_key, payload_normalized, status, occurred_at
                ) VALUES (%s, %s, %s, %s, %s, %s, 'new', NOW())
                ON CONFLICT (tenant_id, idempotency_key) DO NOTHING
                RETURNING id
            """, (
                tenant_id, provider, event_type, subject,
                idempotency_key, to_json(payload)
            ))
            created = cursor.fetchone() is not None
            conn.commit()
            return created
        except Exception as e:
            conn.rollback()
            logger.error(f"Event emit error ({event_type}): {e}")
            return False
        finally:
            cursor.close()
            conn.close()

    def audit(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
        action: str,
        after: Dict[str, Any],
        before: Optional[Dict[str, Any]] = None,
        changed_fields: Optional[List[str]] = None,
        actor_user_id: Optional[str] = None,
        source: str = "api"
    ) -> None:
        """Insert a row into core_audit_log"""
        try:
            conn = get_db_connection_dict()
        except Exception as e:
            logger.error(f"Audit log error ({entity_type} {action}): {e}")
            return

        cursor = conn.cursor()
        try:
            cursor.execute("""
                INSERT INTO core_audit_log (
                    tenant_id, entity_type, entity_id, action,
                    before_json, after_json, changed_fields,
                    actor_user_id, source
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            """, (
                tenant_id, entity_type, entity_id, action,
                to_json(before) if before is not None else None,
                to_json(after),
                changed_fields or [],
                actor_user_id, source
            ))
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Audit log error ({entity_type} {action}): {e}")
        finally:
            cursor.close()
            conn.close()
