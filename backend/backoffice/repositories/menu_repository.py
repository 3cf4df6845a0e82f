"""
Menu Repository - Data Access Layer for menu items

Author: Backoffice API team
Date: 2026-02-10
"""
from typing import Any, Dict, List, Optional

from backoffice.core.database import get_db_connection_dict
from backoffice.domain.menu import MenuItem, PositionUpdate

ITEM_COLUMNS = "id, menu_id, tenant_id, parent_id, label, item_type, url, ref_id, sort_order, created_at"


class MenuRepository:
    """Repository for menu_items"""

    def find_items(self, tenant_id: str, menu_id: str) -> List[MenuItem]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {ITEM_COLUMNS}
                FROM menu_items
                WHERE tenant_id = %s AND menu_id = %s
                ORDER BY sort_order
            """, (tenant_id, menu_id))
            return [MenuItem(**row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def find_item(self, tenant_id: str, item_id: str) -> Optional[MenuItem]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {ITEM_COLUMNS}
                FROM menu_items
                WHERE tenant_id = %s AND id = %s
            """, (tenant_id, item_id))
            row = cursor.fetchone()
            return MenuItem(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def insert_item(self, tenant_id: str, menu_id: str, data: Dict[str, Any]) -> MenuItem:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                INSERT INTO menu_items (tenant_id, menu_id, parent_id, label, item_type, url, ref_id, sort_order)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {ITEM_COLUMNS}
            """, (
                tenant_id, menu_id, data.get('parent_id'), data['label'],
                data.get('item_type', 'link'), data.get('url'), data.get('ref_id'),
                data['sort_order']
            ))
            row = cursor.fetchone()
            conn.commit()
            return MenuItem(**row)

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def apply_positions(self, tenant_id: str, updates: List[PositionUpdate]) -> None:
        """Write every (parent_id, sort_order) pair in one transaction"""
        if not updates:
            return

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            for update in updates:
                cursor.execute("""
                    UPDATE menu_items
                    SET parent_id = %s, sort_order = %s
                    WHERE id = %s AND tenant_id = %s
                """, (update.parent_id, update.sort_order, update.id, tenant_id))
            conn.commit()

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def delete_items(self, tenant_id: str, item_ids: List[str], renumber: List[PositionUpdate]) -> int:
        """Delete items and close the sort_order gap of the remaining siblings"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                DELETE FROM menu_items
                WHERE tenant_id = %s AND id = ANY(%s)
            """, (tenant_id, item_ids))
            deleted = cursor.rowcount

            for update in renumber:
                cursor.execute("""
                    UPDATE menu_items
                    SET sort_order = %s
                    WHERE id = %s AND tenant_id = %s
                """, (update.sort_order, update.id, tenant_id))

            conn.commit()
            return deleted

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()
