"""
Agenda Repository - Data Access Layer for agenda tasks and reminders

Author: Backoffice API team
Date: 2026-02-11
"""
from datetime import datetime, timedelta
from typing import List, Optional

from psycopg2.extras import Json

from backoffice.core.database import get_db_connection_dict
from backoffice.domain.agenda import AgendaReminder, AgendaTask

TASK_COLUMNS = """
    id, tenant_id, created_by, title, description, due_at, status,
    is_recurring, recurrence, reminder_offsets, created_at
"""


class AgendaRepository:
    """Repository for agenda_tasks and agenda_reminders"""

    def _insert_task(self, cursor, task: dict) -> AgendaTask:
        recurrence = task.get('recurrence')
        cursor.execute(f"""
            INSERT INTO agenda_tasks (
                tenant_id, created_by, title, description, due_at, status,
                is_recurring, recurrence, reminder_offsets
            ) VALUES (%s, %s, %s, %s, %s, 'pending', %s, %s, %s)
            RETURNING {TASK_COLUMNS}
        """, (
            task['tenant_id'], task.get('created_by'), task['title'], task.get('description'),
            task['due_at'], task.get('is_recurring', False),
            Json(recurrence) if recurrence else None,
            task.get('reminder_offsets') or []
        ))
        created = AgendaTask(**cursor.fetchone())

        for offset in created.reminder_offsets or []:
            cursor.execute("""
                INSERT INTO agenda_reminders (tenant_id, task_id, channel, remind_at, status)
                VALUES (%s, %s, 'whatsapp', %s, 'pending')
            """, (created.tenant_id, created.id, created.due_at - timedelta(minutes=offset)))

        return created

    def create_task(self, task: dict) -> AgendaTask:
        """Insert a task plus one pending reminder per offset"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            created = self._insert_task(cursor, task)
            conn.commit()
            return created

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def create_next_occurrence(self, task: AgendaTask, next_due_at: datetime) -> AgendaTask:
        """
        Insert the next occurrence of a recurring task with its reminders and
        mark the current one completed, in one transaction.
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            created = self._insert_task(cursor, {
                'tenant_id': task.tenant_id,
                'created_by': task.created_by,
                'title': task.title,
                'description': task.description,
                'due_at': next_due_at,
                'is_recurring': True,
                'recurrence': task.recurrence.model_dump() if task.recurrence else None,
                'reminder_offsets': task.reminder_offsets,
            })
            cursor.execute("""
                UPDATE agenda_tasks SET status = 'completed' WHERE id = %s
            """, (task.id,))
            conn.commit()
            return created

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def update_task_status(self, tenant_id: str, task_id: str, status: str) -> Optional[AgendaTask]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                UPDATE agenda_tasks
                SET status = %s
                WHERE id = %s AND tenant_id = %s
                RETURNING {TASK_COLUMNS}
            """, (status, task_id, tenant_id))
            row = cursor.fetchone()
            conn.commit()
            return AgendaTask(**row) if row else None

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def find_tasks(self, tenant_id: str, task_ids: List[str]) -> List[AgendaTask]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {TASK_COLUMNS}
                FROM agenda_tasks
                WHERE tenant_id = %s AND id = ANY(%s)
            """, (tenant_id, task_ids))
            return [AgendaTask(**row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def find_due_reminders(self, now: datetime, limit: int = 100) -> List[AgendaReminder]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT id, tenant_id, task_id, channel, remind_at, status, sent_at, last_error
                FROM agenda_reminders
                WHERE status = 'pending' AND remind_at <= %s
                ORDER BY remind_at
                LIMIT %s
            """, (now, limit))
            return [AgendaReminder(**row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def update_reminder(self, reminder_id: str, status: str, last_error: Optional[str] = None,
                        sent_at: Optional[datetime] = None) -> None:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE agenda_reminders
                SET status = %s, last_error = %s, sent_at = COALESCE(%s, sent_at)
                WHERE id = %s
            """, (status, last_error, sent_at, reminder_id))
            conn.commit()

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()
