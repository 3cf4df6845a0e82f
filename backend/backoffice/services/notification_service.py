"""
Notification Service
Queues e-mail / WhatsApp notifications and runs the delivery job

The runner (notifications-run) claims due notifications, sends each one
through SendGrid or Z-API, records an attempt row and either marks the
notification sent, schedules a retry with exponential backoff or gives up
after max_attempts.

Author: Backoffice API team
Date: 2026-02-15
"""
import logging
import re
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from backoffice.connectors.sendgrid_connector import SendGridConnector
from backoffice.connectors.zapi_connector import ZApiConnector
from backoffice.core.auth import TenantContext
from backoffice.core.config import settings
from backoffice.core.errors import NotFoundError, ValidationError
from backoffice.core.text import only_digits
from backoffice.domain.notification import CHANNELS, Notification, NotificationCreate
from backoffice.repositories.integration_repository import IntegrationRepository, is_whatsapp_configured
from backoffice.repositories.notification_repository import NotificationRepository

logger = logging.getLogger(__name__)

CONFIG_CACHE_SECONDS = 60
STUCK_AFTER_MINUTES = 5
BACKOFF_BASE_SECONDS = 60
BACKOFF_MAX_SECONDS = 3600

# tenant_id -> (config or None, cached_at epoch)
_email_config_cache: Dict[str, Tuple[Optional[Dict[str, Any]], float]] = {}
_whatsapp_config_cache: Dict[str, Tuple[Optional[Dict[str, Any]], float]] = {}

PLACEHOLDER = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")


def clear_config_cache():
    _email_config_cache.clear()
    _whatsapp_config_cache.clear()


# ============================================================================
# Rendering
# ============================================================================

def render_template(template: Optional[str], variables: Dict[str, Any]) -> str:
    """Replace {{ key }} placeholders; unknown keys are left as they are"""
    if not template:
        return ""

    def replace(match):
        key = match.group(1)
        if key in variables and variables[key] is not None:
            return str(variables[key])
        return match.group(0)

    return PLACEHOLDER.sub(replace, template)


def markdown_to_html(text: Optional[str]) -> str:
    """**bold**, *bold*, [text](url) and line breaks"""
    if not text:
        return ""
    result = re.sub(r"\*\*(.+?)\*\*", r"<strong>\1</strong>", text)
    result = re.sub(r"\*(.+?)\*", r"<strong>\1</strong>", result)
    result = re.sub(
        r"\[(.+?)\]\((.+?)\)",
        r'<a href="\2" style="color: #667eea; text-decoration: underline;">\1</a>',
        result
    )
    return result.replace("\n", "<br>")


def build_email_html(subject: str, body: str, from_name: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="margin: 0; padding: 0; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; background-color: #f4f4f5;">
  <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="background-color: #f4f4f5;">
    <tr>
      <td align="center" style="padding: 40px 20px;">
        <table role="presentation" width="100%" style="max-width: 600px; background-color: #ffffff; border-radius: 8px; overflow: hidden;">
          <tr>
            <td style="padding: 30px 40px; border-bottom: 1px solid #e4e4e7;">
              <h1 style="margin: 0; font-size: 20px; font-weight: 600; color: #18181b;">{subject}</h1>
            </td>
          </tr>
          <tr>
            <td style="padding: 30px 40px;">
              <div style="font-size: 15px; line-height: 1.6; color: #3f3f46;">
                {markdown_to_html(body)}
              </div>
            </td>
          </tr>
          <tr>
            <td style="padding: 20px 40px; background-color: #fafafa; border-top: 1px solid #e4e4e7;">
              <p style="margin: 0; font-size: 12px; color: #71717a; text-align: center;">
                Enviado por {from_name}
              </p>
            </td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>"""


def calculate_backoff_seconds(attempt_no: int) -> int:
    """60s, 120s, 240s ... capped at one hour"""
    return min(BACKOFF_BASE_SECONDS * 2 ** (attempt_no - 1), BACKOFF_MAX_SECONDS)


# ============================================================================
# Results
# ============================================================================

@dataclass
class SendOutcome:
    success: bool
    error: Optional[str] = None
    response: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RunnerStats:
    claimed_count: int = 0
    processed_success: int = 0
    processed_error: int = 0
    scheduled_retries: int = 0
    failed_final: int = 0
    unstuck_count: int = 0


@dataclass
class NotificationRunResult:
    success: bool
    stats: RunnerStats = field(default_factory=RunnerStats)
    duration_ms: int = 0
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data['message'] is None:
            del data['message']
        return data


class NotificationService:
    """
    Service for notifications

    Handles:
    - Enqueue (literal content or email_templates rendering)
    - The delivery runner with retries
    """

    def __init__(
        self,
        repo: NotificationRepository = None,
        integrations: IntegrationRepository = None,
        email_factory: Callable[[str], SendGridConnector] = SendGridConnector,
        whatsapp_factory: Callable[[Dict[str, Any]], ZApiConnector] = ZApiConnector.from_config,
        sendgrid_api_key: Optional[str] = None
    ):
        self.repo = repo or NotificationRepository()
        self.integrations = integrations or IntegrationRepository()
        self.email_factory = email_factory
        self.whatsapp_factory = whatsapp_factory
        self.sendgrid_api_key = sendgrid_api_key if sendgrid_api_key is not None else settings.SENDGRID_API_KEY

    # =========================================================================
    # Enqueue
    # =========================================================================

    def enqueue(self, ctx: TenantContext, data: NotificationCreate) -> Notification:
        if data.channel not in CHANNELS:
            raise ValidationError(f"Canal não suportado: {data.channel}", field="channel")
        if not data.recipient or not data.recipient.strip():
            raise ValidationError("Destinatário é obrigatório", field="recipient")

        subject = data.subject
        body = data.body
        if data.template_key:
            template = self.repo.find_template(ctx.tenant_id, data.template_key)
            if not template:
                raise NotFoundError(f"Template não encontrado: {data.template_key}")
            subject = template.get('subject')
            body = template.get('body')

        if not body:
            raise ValidationError("Conteúdo da notificação é obrigatório", field="body")

        subject = render_template(subject, data.variables) or "Notificação"
        body = render_template(body, data.variables)

        payload = {key: value for key, value in data.variables.items()
                   if key in ('order_id', 'customer_id', 'rule_type')}
        if data.channel == "email":
            payload.update({'email_subject': subject, 'email_body': body})
        else:
            payload['whatsapp_message'] = body

        notification = self.repo.insert(
            ctx.tenant_id, data.channel, data.recipient.strip(), data.template_key,
            payload, data.scheduled_for or datetime.now(timezone.utc), data.max_attempts
        )
        logger.info(f"Notification {notification.id} scheduled ({data.channel}) for tenant {ctx.tenant_id}")
        return notification

    # =========================================================================
    # Config resolution (cached per tenant)
    # =========================================================================

    def get_email_config(self, tenant_id: str) -> Optional[Dict[str, Any]]:
        """Tenant config when verified (or DNS ok), else the verified system config"""
        cached = _email_config_cache.get(tenant_id)
        if cached and time.time() - cached[1] < CONFIG_CACHE_SECONDS:
            return cached[0]

        config = self.integrations.get_email_config(tenant_id)
        usable = config and (
            config.get('verification_status') == 'verified'
            or (config.get('dns_all_ok') and config.get('from_email') and config.get('from_name'))
        )

        if usable:
            config = dict(config, is_system_fallback=False)
        else:
            logger.info(f"Tenant {tenant_id} has no usable email config, using system fallback")
            system = self.integrations.get_system_email_config()
            if system and system.get('verification_status') == 'verified':
                config = dict(system, is_system_fallback=True)
            else:
                config = None

        _email_config_cache[tenant_id] = (config, time.time())
        return config

    def get_whatsapp_config(self, tenant_id: str) -> Optional[Dict[str, Any]]:
        cached = _whatsapp_config_cache.get(tenant_id)
        if cached and time.time() - cached[1] < CONFIG_CACHE_SECONDS:
            return cached[0]

        config = self.integrations.get_whatsapp_config(tenant_id)
        _whatsapp_config_cache[tenant_id] = (config, time.time())
        return config

    # =========================================================================
    # Senders
    # =========================================================================

    async def send_email(self, notification: Notification) -> SendOutcome:
        if not self.sendgrid_api_key:
            return SendOutcome(
                success=False,
                error="SENDGRID_API_KEY não configurada. Configure a API key nas variáveis de ambiente."
            )

        config = self.get_email_config(notification.tenant_id)
        if not config:
            return SendOutcome(
                success=False,
                error="Nenhum remetente de email configurado. Configure o Email do Sistema "
                      "(Plataforma) ou o email da loja em Integrações."
            )
        if not config.get('from_email') or not config.get('from_name'):
            return SendOutcome(
                success=False,
                error="Configuração de email incompleta. Preencha nome e email do remetente."
            )
        if "@" not in (notification.recipient or ""):
            return SendOutcome(success=False, error=f'Email do destinatário inválido: "{notification.recipient}"')

        subject = notification.payload.get('email_subject') or "Notificação"
        body = notification.payload.get('email_body') or ""

        connector = self.email_factory(self.sendgrid_api_key)
        result = await connector.send(
            notification.recipient, subject,
            build_email_html(subject, body, config['from_name']),
            from_email=config['from_email'],
            from_name=config['from_name'],
            reply_to=config.get('reply_to')
        )
        if not result.success:
            return SendOutcome(success=False, error=result.error)

        return SendOutcome(success=True, response={
            'message_id': result.message_id,
            'from_used': config['from_email'],
            'is_system_fallback': config.get('is_system_fallback', False),
        })

    async def send_whatsapp(self, notification: Notification) -> SendOutcome:
        phone = only_digits(notification.recipient)
        if len(phone) < 10:
            return SendOutcome(
                success=False,
                error=f'Número de WhatsApp inválido: "{notification.recipient}" (mínimo 10 dígitos)'
            )

        config = self.get_whatsapp_config(notification.tenant_id)
        if not is_whatsapp_configured(config):
            return SendOutcome(
                success=False,
                error="WhatsApp não configurado. Configure em Integrações → Outros → WhatsApp."
            )

        connector = self.whatsapp_factory(config)
        result = await connector.send_text(phone, notification.payload.get('whatsapp_message') or "")
        if not result.success:
            return SendOutcome(success=False, error=result.error)

        return SendOutcome(success=True, response={'message_id': result.message_id, 'provider': "zapi"})

    async def deliver(self, notification: Notification) -> SendOutcome:
        if notification.channel == "email":
            return await self.send_email(notification)
        if notification.channel == "whatsapp":
            return await self.send_whatsapp(notification)
        return SendOutcome(success=False, error=f"Canal não suportado: {notification.channel}")

    # =========================================================================
    # Runner
    # =========================================================================

    def _log_entry(self, notification: Notification, status: str, attempt_no: int,
                   finished_at: datetime, error: Optional[str]) -> Dict[str, Any]:
        payload = notification.payload
        if notification.channel == "whatsapp":
            preview = (payload.get('whatsapp_message') or "")[:200]
        else:
            preview = f"{payload.get('email_subject') or 'Notificação'}: {(payload.get('email_body') or '')[:150]}"

        return {
            'tenant_id': notification.tenant_id,
            'notification_id': notification.id,
            'rule_id': notification.rule_id,
            'rule_type': payload.get('rule_type') or "unknown",
            'channel': notification.channel,
            'order_id': payload.get('order_id'),
            'customer_id': payload.get('customer_id'),
            'recipient': notification.recipient,
            'status': status,
            'scheduled_for': notification.scheduled_for,
            'sent_at': finished_at if status == "sent" else None,
            'content_preview': preview[:500],
            'attempt_count': attempt_no,
            'error_message': error,
        }

    async def run(self, limit: int = 25, tenant_id: Optional[str] = None,
                  now: Optional[datetime] = None) -> NotificationRunResult:
        start_time = time.time()
        now = now or datetime.now(timezone.utc)
        result = NotificationRunResult(success=True)
        stats = result.stats

        logger.info(f"Notifications run: limit={limit}, tenant_id={tenant_id or 'all'}, "
                    f"sendgrid_configured={bool(self.sendgrid_api_key)}")

        stats.unstuck_count = self.repo.unstick(now - timedelta(minutes=STUCK_AFTER_MINUTES), tenant_id)
        if stats.unstuck_count:
            logger.info(f"Unstuck {stats.unstuck_count} notifications left in 'sending'")

        due = self.repo.find_due(now, limit, tenant_id)
        if not due:
            result.message = "No due notifications"
            result.duration_ms = int((time.time() - start_time) * 1000)
            return result

        claimed_ids = set(self.repo.claim([n.id for n in due], now))
        claimed = [n for n in due if n.id in claimed_ids]
        stats.claimed_count = len(claimed)
        logger.info(f"Claimed {stats.claimed_count} of {len(due)} due notifications")

        for notification in claimed:
            attempt_no = notification.attempt_count + 1
            try:
                attempt_id = self.repo.create_attempt(notification, attempt_no, now)
            except Exception as e:
                logger.error(f"Error creating attempt for {notification.id}: {e}")
                continue

            try:
                outcome = await self.deliver(notification)
            except Exception as e:
                logger.error(f"Unexpected error sending notification {notification.id}: {e}")
                outcome = SendOutcome(success=False, error=str(e) or "Unknown error")

            finished_at = datetime.now(timezone.utc)

            if outcome.success:
                self.repo.finish_attempt(attempt_id, "success", finished_at, provider_response=outcome.response)
                self.repo.mark_sent(notification.id, attempt_no, finished_at)
                self.repo.upsert_log(self._log_entry(notification, "sent", attempt_no, finished_at, None))
                stats.processed_success += 1
                logger.info(f"Notification {notification.id} sent")
                continue

            self.repo.finish_attempt(
                attempt_id, "error", finished_at,
                error_message=outcome.error, provider_response=outcome.response or None
            )
            stats.processed_error += 1

            if attempt_no >= notification.max_attempts:
                self.repo.mark_failed(notification.id, attempt_no, outcome.error)
                self.repo.upsert_log(self._log_entry(notification, "failed", attempt_no, finished_at, outcome.error))
                stats.failed_final += 1
                logger.info(f"Notification {notification.id} failed after {attempt_no} attempts: {outcome.error}")
            else:
                backoff = calculate_backoff_seconds(attempt_no)
                self.repo.schedule_retry(
                    notification.id, attempt_no, outcome.error,
                    finished_at + timedelta(seconds=backoff)
                )
                self.repo.upsert_log(self._log_entry(notification, "retrying", attempt_no, finished_at, outcome.error))
                stats.scheduled_retries += 1
                logger.info(f"Notification {notification.id} retry in {backoff}s: {outcome.error}")

        result.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Notifications run completed in {result.duration_ms}ms: {asdict(stats)}")
        return result
