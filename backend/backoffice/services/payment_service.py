"""
Payment Service
Pagar.me charges (PIX, boleto, credit card) and webhook status sync

Author: Backoffice API team
Date: 2026-02-16
"""
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from backoffice.connectors.pagarme_connector import PagarmeConnector
from backoffice.core.auth import TenantContext
from backoffice.core.config import settings
from backoffice.core.errors import IntegrationError, ValidationError
from backoffice.core.text import only_digits
from backoffice.domain.payment import CHARGE_STATUS_MAP, PAYMENT_METHODS, ChargeCreate
from backoffice.repositories.event_repository import EventRepository
from backoffice.repositories.payment_repository import PaymentRepository

logger = logging.getLogger(__name__)

PIX_EXPIRES_SECONDS = 3600
BOLETO_DUE_DAYS = 3


def build_order_payload(data: ChargeCreate, tenant_id: str, reference_id: str,
                        credential_source: str, now: datetime) -> Dict[str, Any]:
    """Pagar.me /orders body for a single-item charge"""
    customer = {
        'name': data.customer.name,
        'email': data.customer.email,
        'document': only_digits(data.customer.document),
        'type': "individual",
    }
    phone = only_digits(data.customer.phone)
    if phone:
        customer['phones'] = {
            'mobile_phone': {'country_code': "55", 'area_code': phone[:2], 'number': phone[2:]}
        }

    payload = {
        'customer': customer,
        'items': [{'amount': data.amount, 'description': "Pedido", 'quantity': 1, 'code': reference_id}],
        'payments': [],
        'metadata': {
            'checkout_id': data.checkout_id,
            'order_id': data.order_id,
            'tenant_id': tenant_id,
            'credential_source': credential_source,
        },
    }

    if data.method == "pix":
        payload['payments'].append({'payment_method': "pix", 'pix': {'expires_in': PIX_EXPIRES_SECONDS}})

    elif data.method == "boleto":
        payload['payments'].append({
            'payment_method': "boleto",
            'boleto': {
                'instructions': "Não receber após o vencimento",
                'due_at': (now + timedelta(days=BOLETO_DUE_DAYS)).isoformat(),
                'document_number': reference_id[:16],
                'type': "DM",
            },
        })

    elif data.method == "credit_card":
        if not data.card:
            raise ValidationError("Card data required for credit card payment", field="card")
        card = {
            'number': only_digits(data.card.number),
            'holder_name': data.card.holder_name,
            'exp_month': data.card.exp_month,
            'exp_year': data.card.exp_year,
            'cvv': data.card.cvv,
        }
        if data.billing_address:
            address = data.billing_address
            card['billing_address'] = {
                'line_1': f"{address.number}, {address.street}",
                'line_2': address.complement or "",
                'zip_code': only_digits(address.postal_code),
                'city': address.city,
                'state': address.state,
                'country': address.country or "BR",
            }
        payload['payments'].append({
            'payment_method': "credit_card",
            'credit_card': {'installments': data.installments, 'card': card},
        })

    return payload


class PaymentService:
    """
    Service for Pagar.me payments

    Handles:
    - Charge creation with tenant or platform credentials
    - Webhook processing, idempotent per Pagar.me event id
    """

    def __init__(self, repo: PaymentRepository = None, events: EventRepository = None,
                 connector_factory: Callable[[str], PagarmeConnector] = PagarmeConnector):
        self.repo = repo or PaymentRepository()
        self.events = events or EventRepository()
        self.connector_factory = connector_factory

    def get_credentials(self, tenant_id: str) -> Dict[str, str]:
        """Enabled tenant provider first, PAGARME_API_KEY (sandbox) second"""
        provider = self.repo.get_provider(tenant_id)
        credentials = (provider or {}).get('credentials') or {}

        if provider and provider.get('is_enabled') and credentials.get('api_key'):
            return {
                'api_key': credentials['api_key'],
                'account_id': credentials.get('account_id') or "",
                'environment': provider.get('environment') or "sandbox",
                'source': "database",
            }

        if settings.PAGARME_API_KEY:
            return {
                'api_key': settings.PAGARME_API_KEY,
                'account_id': settings.PAGARME_ACCOUNT_ID or "",
                'environment': "sandbox",
                'source': "fallback",
            }

        raise ValidationError("Pagar.me não configurado. Configure em Sistema → Integrações.")

    async def create_charge(self, ctx: TenantContext, data: ChargeCreate) -> Dict[str, Any]:
        if data.method not in PAYMENT_METHODS:
            raise ValidationError(f"Método de pagamento inválido: {data.method}", field="method")

        credentials = self.get_credentials(ctx.tenant_id)
        logger.info(f"Pagar.me charge ({data.method}, {data.amount} cents) with {credentials['source']} credentials")

        if not self.repo.is_method_enabled(ctx.tenant_id, data.method):
            raise ValidationError(f"Método de pagamento {data.method} não está habilitado", field="method")

        now = datetime.now(timezone.utc)
        reference_id = data.order_id or data.checkout_id or f"temp-{int(time.time() * 1000)}"
        payload = build_order_payload(data, ctx.tenant_id, reference_id, credentials['source'], now)

        result = await self.connector_factory(credentials['api_key']).create_order(payload)
        if not result.success:
            raise IntegrationError(result.error or "Failed to create charge")

        order = result.data or {}
        charge = (order.get('charges') or [{}])[0]
        last_transaction = charge.get('last_transaction') or {}

        payment_data = {
            'order_id': order.get('id'),
            'charge_id': charge.get('id'),
            'credential_source': credentials['source'],
            'environment': credentials['environment'],
            'qr_code': last_transaction.get('qr_code'),
            'qr_code_url': last_transaction.get('qr_code_url'),
            'boleto_url': last_transaction.get('pdf'),
            'boleto_barcode': last_transaction.get('line'),
            'boleto_due_date': last_transaction.get('due_at'),
        }

        transaction = self.repo.insert_transaction(ctx.tenant_id, {
            'order_id': data.order_id,
            'provider_transaction_id': order.get('id'),
            'method': data.method,
            'status': charge.get('status') or "pending",
            'amount': data.amount,
            'payment_data': payment_data,
        })

        if data.order_id and data.method in ("pix", "boleto"):
            self._emit_generated(ctx.tenant_id, data, order.get('id'), last_transaction)

        return {
            'success': True,
            'transaction_id': transaction.id,
            'provider_id': order.get('id'),
            'status': charge.get('status'),
            'payment_data': payment_data,
            'credential_source': credentials['source'],
        }

    def _emit_generated(self, tenant_id: str, data: ChargeCreate, provider_id: Optional[str],
                        last_transaction: Dict[str, Any]) -> None:
        new_status = "pix_generated" if data.method == "pix" else "boleto_generated"
        order = self.repo.find_order_summary(tenant_id, data.order_id) or {}

        created = self.events.emit(
            tenant_id,
            "payment_status_changed",
            {
                'order_id': data.order_id,
                'order_number': order.get('order_number') or "",
                'customer_name': order.get('customer_name') or "",
                'customer_email': order.get('customer_email') or "",
                'customer_phone': order.get('customer_phone') or "",
                'order_total': order.get('total') or 0,
                'old_status': None,
                'new_status': new_status,
                'payment_method': data.method,
                'payment_gateway': "pagarme",
                'pix_link': last_transaction.get('qr_code_url') or "",
                'boleto_link': last_transaction.get('pdf') or "",
            },
            idempotency_key=f"payment_{new_status}_{data.order_id}_{provider_id}",
            subject=data.order_id
        )
        if created:
            logger.info(f"Emitted payment_status_changed ({new_status}) for order {data.order_id}")

    # =========================================================================
    # Webhook
    # =========================================================================

    def handle_webhook(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        start_time = time.time()
        now = datetime.now(timezone.utc)

        event_type = payload.get('type') or "unknown"
        data = payload.get('data') or {}
        provider_order_id = data.get('id')
        charge = (data.get('charges') or [{}])[0]
        charge_status = charge.get('status')
        event_id = payload.get('id') or f"{int(start_time * 1000)}-{provider_order_id}"

        logger.info(f"Pagar.me webhook {event_type} ({event_id}): order {provider_order_id}, charge status {charge_status}")

        if not provider_order_id:
            return {'received': True, 'message': "No order ID"}

        if self.repo.event_exists(event_id):
            logger.info(f"Event {event_id} already processed, skipping")
            return {'received': True, 'message': "Event already processed", 'event_id': event_id}

        transaction = self.repo.find_transaction_by_provider_id(provider_order_id)
        if not transaction:
            logger.info(f"Transaction not found for Pagar.me order {provider_order_id}")
            return {'received': True, 'message': "Transaction not found", 'pagarme_order_id': provider_order_id}

        transition = CHARGE_STATUS_MAP.get(charge_status)
        if transition is None:
            logger.warning(f"Unknown charge status: {charge_status}")

        paid_amount = None
        if transition and transition.paid:
            paid_amount = charge.get('paid_amount') or charge.get('amount') or transaction.get('amount')

        applied = self.repo.apply_webhook(
            transaction, transition, event_id, event_type, payload, now, paid_amount=paid_amount
        )
        if not applied:
            logger.info(f"Concurrent processing of event {event_id}, skipping")
            return {'received': True, 'message': "Concurrent processing"}

        new_status = transition.transaction if transition else transaction['status']
        logger.info(f"Transaction {transaction['id']} updated: {transaction['status']} -> {new_status}")

        return {
            'received': True,
            'transaction_id': str(transaction['id']),
            'order_id': str(transaction['order_id']) if transaction.get('order_id') else None,
            'previous_status': transaction['status'],
            'new_status': new_status,
            'payment_status': transition.payment if transition else None,
            'duration_ms': int((time.time() - start_time) * 1000),
        }
