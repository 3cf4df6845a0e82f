"""
Customer Repository - Data Access Layer for Customers

Handles all database queries for customers, addresses, tags and notes.

Author: Backoffice API team
Date: 2026-02-09
"""
from typing import Any, Dict, List, Optional, Tuple

from backoffice.core.database import get_db_connection_dict
from backoffice.domain.customer import Customer, CustomerAddress

CUSTOMER_COLUMNS = """
    id, tenant_id, email, full_name, phone, cpf, cnpj, person_type,
    company_name, ie, state_registration_is_exempt, status,
    birth_date, gender, notes,
    accepts_marketing, accepts_email_marketing,
    accepts_sms_marketing, accepts_whatsapp_marketing,
    loyalty_tier, deleted_at, created_at, updated_at
"""


class CustomerRepository:
    """
    Repository for Customer data access

    Every query is scoped by tenant_id.
    """

    def find_by_id(self, tenant_id: str, customer_id: str) -> Optional[Customer]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {CUSTOMER_COLUMNS}
                FROM customers
                WHERE id = %s AND tenant_id = %s
            """, (customer_id, tenant_id))

            row = cursor.fetchone()
            return Customer(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_by_email(self, tenant_id: str, email: str) -> Optional[Customer]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {CUSTOMER_COLUMNS}
                FROM customers
                WHERE tenant_id = %s AND email = %s
                LIMIT 1
            """, (tenant_id, email))

            row = cursor.fetchone()
            return Customer(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_all(
        self,
        tenant_id: str,
        search: Optional[str] = None,
        status: Optional[str] = None,
        include_deleted: bool = False,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Customer], int]:
        """
        Find customers with filters

        Args:
            search: ILIKE over full_name, email and phone
            status: active / inactive
            include_deleted: Also return soft-deleted customers

        Returns:
            Tuple of (list of customers, total count)
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            conditions = ["tenant_id = %s"]
            params: List[Any] = [tenant_id]

            if not include_deleted:
                conditions.append("deleted_at IS NULL")

            if status:
                conditions.append("status = %s")
                params.append(status)

            if search:
                conditions.append("(full_name ILIKE %s OR email ILIKE %s OR phone ILIKE %s)")
                pattern = f"%{search}%"
                params.extend([pattern, pattern, pattern])

            where_clause = " AND ".join(conditions)

            cursor.execute(f"""
                SELECT COUNT(*) as total
                FROM customers
                WHERE {where_clause}
            """, params)
            total = cursor.fetchone()['total']

            cursor.execute(f"""
                SELECT {CUSTOMER_COLUMNS}
                FROM customers
                WHERE {where_clause}
                ORDER BY created_at DESC
                LIMIT %s OFFSET %s
            """, params + [limit, offset])

            customers = [Customer(**row) for row in cursor.fetchall()]
            return customers, total

        finally:
            cursor.close()
            conn.close()

    def insert(self, tenant_id: str, data: Dict[str, Any]) -> Customer:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            columns = ["tenant_id"] + list(data.keys())
            placeholders = ", ".join(["%s"] * len(columns))

            cursor.execute(f"""
                INSERT INTO customers ({", ".join(columns)})
                VALUES ({placeholders})
                RETURNING {CUSTOMER_COLUMNS}
            """, [tenant_id] + list(data.values()))

            row = cursor.fetchone()
            conn.commit()
            return Customer(**row)

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def update(self, tenant_id: str, customer_id: str, changes: Dict[str, Any]) -> Optional[Customer]:
        """Apply a column -> value dict and return the updated row"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            assignments = ", ".join(f"{column} = %s" for column in changes)

            cursor.execute(f"""
                UPDATE customers
                SET {assignments}, updated_at = NOW()
                WHERE id = %s AND tenant_id = %s
                RETURNING {CUSTOMER_COLUMNS}
            """, list(changes.values()) + [customer_id, tenant_id])

            row = cursor.fetchone()
            conn.commit()
            return Customer(**row) if row else None

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def count_orders(self, tenant_id: str, customer_id: str) -> int:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT COUNT(*) as total
                FROM orders
                WHERE tenant_id = %s AND customer_id = %s
            """, (tenant_id, customer_id))
            return cursor.fetchone()['total']

        finally:
            cursor.close()
            conn.close()

    # =========================================================================
    # Addresses
    # =========================================================================

    def find_addresses(self, customer_id: str) -> List[CustomerAddress]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT *
                FROM customer_addresses
                WHERE customer_id = %s
                ORDER BY is_default DESC, created_at
            """, (customer_id,))
            return [CustomerAddress(**row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def insert_address(self, customer_id: str, data: Dict[str, Any]) -> CustomerAddress:
        """
        Insert an address. When it is flagged as default, the other addresses
        of the customer lose the flag in the same transaction.
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            if data.get('is_default'):
                cursor.execute("""
                    UPDATE customer_addresses
                    SET is_default = FALSE
                    WHERE customer_id = %s AND is_default = TRUE
                """, (customer_id,))

            columns = ["customer_id"] + list(data.keys())
            placeholders = ", ".join(["%s"] * len(columns))

            cursor.execute(f"""
                INSERT INTO customer_addresses ({", ".join(columns)})
                VALUES ({placeholders})
                RETURNING *
            """, [customer_id] + list(data.values()))

            row = cursor.fetchone()
            conn.commit()
            return CustomerAddress(**row)

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    # =========================================================================
    # Tags & notes
    # =========================================================================

    def replace_tags(self, customer_id: str, tag_ids: List[str]) -> None:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("DELETE FROM customer_tag_assignments WHERE customer_id = %s", (customer_id,))
            for tag_id in tag_ids:
                cursor.execute("""
                    INSERT INTO customer_tag_assignments (customer_id, tag_id)
                    VALUES (%s, %s)
                """, (customer_id, tag_id))
            conn.commit()

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def insert_note(self, tenant_id: str, customer_id: str, content: str,
                    author_id: Optional[str] = None) -> Dict[str, Any]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO customer_notes (tenant_id, customer_id, author_id, content)
                VALUES (%s, %s, %s, %s)
                RETURNING id, customer_id, author_id, content, created_at
            """, (tenant_id, customer_id, author_id, content))
            row = cursor.fetchone()
            conn.commit()
            return dict(row)

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()
