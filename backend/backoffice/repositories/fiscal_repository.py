"""
Fiscal Repository - Data Access Layer for NF-e invoices

Tables: fiscal_settings, fiscal_products, fiscal_invoices,
fiscal_invoice_items, fiscal_invoice_events, ibge_municipios

Author: Backoffice API team
Date: 2026-02-13
"""
import logging
from typing import Any, Dict, List, Optional

from backoffice.core.database import get_db_connection_dict
from backoffice.core.text import strip_accents
from backoffice.domain.fiscal import FiscalInvoice, FiscalInvoiceItem, FiscalSettings
from backoffice.repositories.event_repository import to_json

logger = logging.getLogger(__name__)

INVOICE_COLUMNS = """
    id, tenant_id, order_id, numero, serie, status, natureza_operacao, cfop,
    valor_total, valor_produtos, valor_frete, valor_desconto,
    dest_nome, dest_cpf_cnpj, dest_inscricao_estadual, dest_telefone, dest_email,
    dest_endereco_logradouro, dest_endereco_numero, dest_endereco_complemento,
    dest_endereco_bairro, dest_endereco_municipio, dest_endereco_municipio_codigo,
    dest_endereco_uf, dest_endereco_cep,
    observacoes, chave_acesso, protocolo, danfe_url, xml_url, mensagem_sefaz,
    last_error, submitted_at, authorized_at, cancelled_at, created_at, updated_at
"""

ITEM_COLUMNS = (
    'numero_item', 'order_item_id', 'codigo_produto', 'descricao', 'ncm', 'cfop',
    'unidade', 'quantidade', 'valor_unitario', 'valor_total', 'origem', 'csosn', 'cst',
)


class FiscalRepository:
    """Repository for NF-e data access"""

    # =========================================================================
    # Settings and lookups
    # =========================================================================

    def get_settings(self, tenant_id: str) -> Optional[FiscalSettings]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT * FROM fiscal_settings WHERE tenant_id = %s", (tenant_id,))
            row = cursor.fetchone()
            return FiscalSettings(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_order(self, tenant_id: str, order_id: str) -> Optional[Dict[str, Any]]:
        """Order with the customer's name, document and contacts joined in"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT o.*,
                       c.full_name AS customer_full_name,
                       c.cpf AS customer_cpf,
                       c.cnpj AS customer_cnpj,
                       c.email AS customer_email,
                       c.phone AS customer_phone
                FROM orders o
                LEFT JOIN customers c ON c.id = o.customer_id
                WHERE o.id = %s AND o.tenant_id = %s
            """, (order_id, tenant_id))
            row = cursor.fetchone()
            return dict(row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_order_items(self, order_id: str) -> List[Dict[str, Any]]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT id, product_id, sku, product_name, quantity, unit_price, total_price
                FROM order_items
                WHERE order_id = %s
                ORDER BY created_at ASC
            """, (order_id,))
            return [dict(row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def find_fiscal_products(self, product_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        """fiscal_products rows keyed by product_id"""
        if not product_ids:
            return {}

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT product_id, ncm, cfop_override, unidade_comercial, origem,
                       csosn_override, cst_override
                FROM fiscal_products
                WHERE product_id = ANY(%s)
            """, (list(product_ids),))
            return {str(row['product_id']): dict(row) for row in cursor.fetchall()}

        finally:
            cursor.close()
            conn.close()

    def lookup_ibge_code(self, city: Optional[str], uf: Optional[str]) -> Optional[str]:
        """
        Find the IBGE municipality code for a city name.

        Tries, in order: exact match without accents, exact match as typed,
        prefix match, substring match.
        """
        if not city or not uf:
            return None

        normalized = strip_accents(city).upper().strip()
        raw = city.upper().strip()
        uf = uf.upper()

        attempts = [
            ("nome = %s", normalized),
            ("nome = %s", raw),
            ("nome ILIKE %s", f"{normalized}%"),
            ("nome ILIKE %s", f"%{normalized}%"),
        ]

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            for condition, value in attempts:
                cursor.execute(f"""
                    SELECT codigo FROM ibge_municipios
                    WHERE uf = %s AND {condition}
                    LIMIT 1
                """, (uf, value))
                row = cursor.fetchone()
                if row and row.get('codigo'):
                    return str(row['codigo'])
            return None

        finally:
            cursor.close()
            conn.close()

    # =========================================================================
    # Invoices
    # =========================================================================

    def find_draft_id(self, tenant_id: str, order_id: str) -> Optional[str]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT id FROM fiscal_invoices
                WHERE tenant_id = %s AND order_id = %s AND status = 'draft'
                LIMIT 1
            """, (tenant_id, order_id))
            row = cursor.fetchone()
            return str(row['id']) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_invoice(self, tenant_id: str, invoice_id: str) -> Optional[FiscalInvoice]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {INVOICE_COLUMNS}
                FROM fiscal_invoices
                WHERE id = %s AND tenant_id = %s
            """, (invoice_id, tenant_id))
            row = cursor.fetchone()
            if not row:
                return None

            cursor.execute(f"""
                SELECT {', '.join(ITEM_COLUMNS)}
                FROM fiscal_invoice_items
                WHERE invoice_id = %s
                ORDER BY numero_item ASC
            """, (invoice_id,))
            items = [FiscalInvoiceItem(**item) for item in cursor.fetchall()]
            return FiscalInvoice(**row, items=items)

        finally:
            cursor.close()
            conn.close()

    def save_draft(self, tenant_id: str, draft: Dict[str, Any], items: List[FiscalInvoiceItem],
                   existing_id: Optional[str] = None) -> FiscalInvoice:
        """
        Insert a new draft or overwrite an existing one, replacing its items.

        Runs in a single transaction.
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            columns = list(draft.keys())
            values = [draft[c] for c in columns]

            if existing_id:
                assignments = ", ".join(f"{c} = %s" for c in columns)
                cursor.execute(f"""
                    UPDATE fiscal_invoices
                    SET {assignments}, updated_at = NOW()
                    WHERE id = %s AND tenant_id = %s
                    RETURNING {INVOICE_COLUMNS}
                """, values + [existing_id, tenant_id])
                row = cursor.fetchone()
                cursor.execute("DELETE FROM fiscal_invoice_items WHERE invoice_id = %s", (existing_id,))
            else:
                placeholders = ", ".join(["%s"] * (len(columns) + 1))
                cursor.execute(f"""
                    INSERT INTO fiscal_invoices (tenant_id, {', '.join(columns)})
                    VALUES ({placeholders})
                    RETURNING {INVOICE_COLUMNS}
                """, [tenant_id] + values)
                row = cursor.fetchone()

            invoice_id = row['id']
            for item in items:
                data = item.model_dump()
                cursor.execute(f"""
                    INSERT INTO fiscal_invoice_items (invoice_id, {', '.join(ITEM_COLUMNS)})
                    VALUES ({', '.join(['%s'] * (len(ITEM_COLUMNS) + 1))})
                """, [invoice_id] + [data[c] for c in ITEM_COLUMNS])

            conn.commit()
            return FiscalInvoice(**row, items=items)

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def update_invoice(self, invoice_id: str, changes: Dict[str, Any]) -> None:
        if not changes:
            return

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            assignments = ", ".join(f"{c} = %s" for c in changes)
            cursor.execute(f"""
                UPDATE fiscal_invoices
                SET {assignments}, updated_at = NOW()
                WHERE id = %s
            """, list(changes.values()) + [invoice_id])
            conn.commit()

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def mark_authorized(self, invoice: FiscalInvoice, changes: Dict[str, Any], next_numero: int) -> None:
        """Store the authorization, advance the NF-e counter and move the order to processing"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            assignments = ", ".join(f"{c} = %s" for c in changes)
            cursor.execute(f"""
                UPDATE fiscal_invoices
                SET {assignments}, updated_at = NOW()
                WHERE id = %s
            """, list(changes.values()) + [invoice.id])

            cursor.execute("""
                UPDATE fiscal_settings
                SET numero_nfe_atual = %s
                WHERE tenant_id = %s
            """, (next_numero, invoice.tenant_id))

            if invoice.order_id:
                cursor.execute("""
                    UPDATE orders SET status = 'processing'
                    WHERE id = %s AND tenant_id = %s
                """, (invoice.order_id, invoice.tenant_id))

            conn.commit()

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def add_event(self, tenant_id: str, invoice_id: str, event_type: str,
                  event_data: Dict[str, Any], user_id: Optional[str] = None) -> None:
        """Append to fiscal_invoice_events. Failures are logged only."""
        try:
            conn = get_db_connection_dict()
        except Exception as e:
            logger.error(f"Fiscal event error ({event_type}): {e}")
            return

        cursor = conn.cursor()
        try:
            cursor.execute("""
                INSERT INTO fiscal_invoice_events (invoice_id, tenant_id, event_type, event_data, user_id)
                VALUES (%s, %s, %s, %s, %s)
            """, (invoice_id, tenant_id, event_type, to_json(event_data), user_id))
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Fiscal event error ({event_type}): {e}")
        finally:
            cursor.close()
            conn.close()
