"""
Integration Repository - per-tenant provider credentials

WhatsApp (Z-API) instances, shipping providers and e-mail sender configs.
Rows are returned as plain dicts; credential payloads are jsonb.

Author: Backoffice API team
Date: 2026-02-11
"""
from typing import Any, Dict, Optional

from backoffice.core.database import get_db_connection_dict


class IntegrationRepository:
    """Reads provider configuration rows"""

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

    def get_whatsapp_config(self, tenant_id: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one("""
            SELECT id, tenant_id, instance_id, instance_token, client_token,
                   connection_status, phone_number, is_enabled
            FROM whatsapp_configs
            WHERE tenant_id = %s
            LIMIT 1
        """, (tenant_id,))

    def get_shipping_provider(self, tenant_id: str, provider: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one("""
            SELECT id, tenant_id, provider, is_enabled, supports_tracking, credentials, settings
            FROM shipping_providers
            WHERE tenant_id = %s AND provider = %s
            LIMIT 1
        """, (tenant_id, provider))

    def get_email_config(self, tenant_id: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one("""
            SELECT from_name, from_email, reply_to, verification_status, dns_all_ok
            FROM email_provider_configs
            WHERE tenant_id = %s
            LIMIT 1
        """, (tenant_id,))

    def get_system_email_config(self) -> Optional[Dict[str, Any]]:
        return self._fetch_one("""
            SELECT from_name, from_email, reply_to, verification_status
            FROM system_email_config
            LIMIT 1
        """, ())


def is_whatsapp_configured(config: Optional[Dict[str, Any]]) -> bool:
    """Enabled, connected and carrying the three Z-API credentials"""
    return bool(
        config
        and config.get('is_enabled')
        and config.get('instance_id')
        and config.get('instance_token')
        and config.get('client_token')
        and config.get('connection_status') == 'connected'
    )
