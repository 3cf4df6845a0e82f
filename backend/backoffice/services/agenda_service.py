"""
Agenda Service
Task CRUD and the WhatsApp reminder dispatcher (cron job)

Author: Backoffice API team
Date: 2026-02-11
"""
import calendar
import logging
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from backoffice.connectors.zapi_connector import ZApiConnector
from backoffice.core.auth import TenantContext
from backoffice.core.errors import NotFoundError, ValidationError
from backoffice.domain.agenda import AgendaReminder, AgendaTask, Recurrence, TaskCreate
from backoffice.repositories.agenda_repository import AgendaRepository
from backoffice.repositories.integration_repository import IntegrationRepository, is_whatsapp_configured

logger = logging.getLogger(__name__)

BRAZIL_TZ = ZoneInfo("America/Sao_Paulo")
DISPATCH_BATCH_SIZE = 100


# ============================================================================
# Helpers
# ============================================================================

def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day (Jan 31 + 1 -> Feb 28/29)"""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def calculate_next_due_at(due_at: datetime, recurrence: Recurrence) -> datetime:
    if recurrence.type == "daily":
        return due_at + timedelta(days=recurrence.interval)
    if recurrence.type == "weekly":
        return due_at + timedelta(days=7 * recurrence.interval)
    if recurrence.type == "monthly":
        return add_months(due_at, recurrence.interval)
    return due_at


def format_datetime_br(value: datetime) -> str:
    """dd/mm/yyyy, HH:MM in São Paulo time"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(BRAZIL_TZ).strftime("%d/%m/%Y, %H:%M")


def build_reminder_message(task: AgendaTask) -> str:
    message = f"🔔 *Lembrete*\n\n*{task.title}*\n📅 Vence em: {format_datetime_br(task.due_at)}\n"
    if task.description:
        message += f"\n📝 {task.description}"
    return message


@dataclass
class ReminderDispatchResult:
    success: bool
    dispatched: int = 0
    failed: int = 0
    total: int = 0
    duration_ms: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data['message'] is None:
            del data['message']
        return data


# ============================================================================
# Service
# ============================================================================

class AgendaService:
    """
    Service for agenda tasks

    Handles:
    - Task creation with reminders at due_at - offset
    - Reminder dispatch via Z-API, grouped by tenant
    - Next occurrence of recurring tasks
    """

    def __init__(
        self,
        repo: AgendaRepository = None,
        integrations: IntegrationRepository = None,
        whatsapp_factory: Callable[[Dict[str, Any]], ZApiConnector] = ZApiConnector.from_config
    ):
        self.repo = repo or AgendaRepository()
        self.integrations = integrations or IntegrationRepository()
        self.whatsapp_factory = whatsapp_factory

    def create_task(self, ctx: TenantContext, data: TaskCreate) -> AgendaTask:
        if data.is_recurring and not data.recurrence:
            raise ValidationError("Tarefa recorrente precisa de recorrência", field="recurrence")

        return self.repo.create_task({
            'tenant_id': ctx.tenant_id,
            'created_by': ctx.user_id,
            'title': data.title.strip(),
            'description': data.description,
            'due_at': data.due_at,
            'is_recurring': data.is_recurring,
            'recurrence': data.recurrence.model_dump() if data.is_recurring and data.recurrence else None,
            'reminder_offsets': data.reminder_offsets,
        })

    def set_task_status(self, ctx: TenantContext, task_id: str, status: str) -> AgendaTask:
        task = self.repo.update_task_status(ctx.tenant_id, task_id, status)
        if not task:
            raise NotFoundError("Tarefa não encontrada")
        return task

    def complete_task(self, ctx: TenantContext, task_id: str) -> AgendaTask:
        return self.set_task_status(ctx, task_id, "completed")

    def cancel_task(self, ctx: TenantContext, task_id: str) -> AgendaTask:
        return self.set_task_status(ctx, task_id, "cancelled")

    # =========================================================================
    # Reminder dispatch
    # =========================================================================

    def _record(self, result: ReminderDispatchResult, reminder: AgendaReminder, status: str,
                error: Optional[str] = None) -> None:
        entry = {'reminder_id': reminder.id, 'status': status}
        if error:
            entry['error'] = error

        sent_at = datetime.now(timezone.utc) if status == "sent" else None
        try:
            self.repo.update_reminder(reminder.id, status, last_error=error, sent_at=sent_at)
        except Exception as e:
            logger.error(f"Error saving reminder {reminder.id} as {status}: {e}")
            entry['record_error'] = str(e)

        result.results.append(entry)

        if status == "sent":
            result.dispatched += 1
        elif status == "failed":
            result.failed += 1

    async def dispatch_reminders(self, now: Optional[datetime] = None) -> ReminderDispatchResult:
        """
        Send every pending reminder that is due.

        Outcomes per reminder:
        - task missing -> failed / task_not_found
        - task not pending -> skipped / task_<status>
        - tenant without a connected WhatsApp -> failed / whatsapp_not_configured
        - Z-API ok -> sent, otherwise failed with the provider error
        """
        start_time = time.time()
        now = now or datetime.now(timezone.utc)

        reminders = self.repo.find_due_reminders(now, limit=DISPATCH_BATCH_SIZE)
        result = ReminderDispatchResult(success=True, total=len(reminders))

        if not reminders:
            logger.info("No pending reminders to dispatch")
            result.message = "No pending reminders"
            return result

        logger.info(f"Found {len(reminders)} reminders to dispatch")

        by_tenant: Dict[str, List[AgendaReminder]] = {}
        for reminder in reminders:
            by_tenant.setdefault(reminder.tenant_id, []).append(reminder)

        for tenant_id, tenant_reminders in by_tenant.items():
            try:
                await self._dispatch_tenant(tenant_id, tenant_reminders, now, result)
            except Exception as e:
                logger.error(f"Error dispatching reminders for tenant {tenant_id}: {e}")
                recorded = {entry['reminder_id'] for entry in result.results}
                for reminder in tenant_reminders:
                    if reminder.id not in recorded:
                        self._record(result, reminder, "failed", "tenant_dispatch_error")

        result.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Reminder dispatch completed in {result.duration_ms}ms: "
            f"{result.dispatched} sent, {result.failed} failed"
        )
        return result

    async def _dispatch_tenant(self, tenant_id: str, reminders: List[AgendaReminder], now: datetime,
                               result: ReminderDispatchResult) -> None:
        try:
            config = self.integrations.get_whatsapp_config(tenant_id)
        except Exception as e:
            logger.error(f"Error loading WhatsApp config for tenant {tenant_id}: {e}")
            for reminder in reminders:
                self._record(result, reminder, "failed", "whatsapp_config_error")
            return
        configured = is_whatsapp_configured(config)

        try:
            tasks = self.repo.find_tasks(tenant_id, list({r.task_id for r in reminders}))
        except Exception as e:
            logger.error(f"Error fetching tasks for tenant {tenant_id}: {e}")
            for reminder in reminders:
                self._record(result, reminder, "failed", "task_fetch_error")
            return

        tasks_by_id = {task.id: task for task in tasks}
        connector = self.whatsapp_factory(config) if configured else None

        for reminder in reminders:
            task = tasks_by_id.get(reminder.task_id)
            if not task:
                self._record(result, reminder, "failed", "task_not_found")
                continue

            if task.status != "pending":
                self._record(result, reminder, "skipped", f"task_{task.status}")
                continue

            if not configured:
                logger.info(f"WhatsApp not configured for tenant {tenant_id}")
                self._record(result, reminder, "failed", "whatsapp_not_configured")
                continue

            try:
                send_result = await connector.send_text(config.get('phone_number'), build_reminder_message(task))
            except Exception as e:
                logger.error(f"Reminder {reminder.id} error: {e}")
                self._record(result, reminder, "failed", str(e))
                continue

            if send_result.success:
                self._record(result, reminder, "sent")
                logger.info(f"Reminder {reminder.id} sent successfully")
            else:
                self._record(result, reminder, "failed", send_result.error or "send_failed")

        self._roll_recurring_tasks(reminders, tasks, now)

    def _roll_recurring_tasks(self, reminders: List[AgendaReminder], tasks: List[AgendaTask],
                              now: datetime) -> None:
        """Create the next occurrence of recurring tasks that are past due"""
        for task in tasks:
            if not task.is_recurring or not task.recurrence or task.status != "pending":
                continue
            if task.due_at > now:
                continue
            if not any(r.task_id == task.id for r in reminders):
                continue

            next_due_at = calculate_next_due_at(task.due_at, task.recurrence)
            logger.info(f"Creating next occurrence for recurring task {task.id}, next due: {next_due_at.isoformat()}")
            try:
                self.repo.create_next_occurrence(task, next_due_at)
            except Exception as e:
                logger.error(f"Error creating next occurrence for task {task.id}: {e}")
