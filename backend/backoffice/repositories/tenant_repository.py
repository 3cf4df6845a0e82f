"""
Tenant Repository - profiles / user_roles lookups

Author: Backoffice API team
Date: 2026-02-09
"""
from typing import Optional

from backoffice.core.database import get_db_connection_dict


class TenantRepository:
    """Resolves which tenant a user is working on and their role there"""

    def get_current_tenant_id(self, user_id: str) -> Optional[str]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT current_tenant_id
                FROM profiles
                WHERE id = %s
            """, (user_id,))
            row = cursor.fetchone()
            if not row or not row['current_tenant_id']:
                return None
            return str(row['current_tenant_id'])

        finally:
            cursor.close()
            conn.close()

    def get_user_role(self, user_id: str, tenant_id: str) -> Optional[str]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT role
                FROM user_roles
                WHERE user_id = %s AND tenant_id = %s
                LIMIT 1
            """, (user_id, tenant_id))
            row = cursor.fetchone()
            return row['role'] if row else None

        finally:
            cursor.close()
            conn.close()
