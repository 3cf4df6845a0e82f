"""
Unit tests for AgendaService (tasks, recurrence, reminder dispatch)

Author: Backoffice API team
Date: 2026-02-11
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from backoffice.connectors.zapi_connector import WhatsAppSendResult
from backoffice.core.errors import NotFoundError, ValidationError
from backoffice.domain.agenda import AgendaReminder, AgendaTask, Recurrence, TaskCreate
from backoffice.services.agenda_service import (
    AgendaService, add_months, build_reminder_message, calculate_next_due_at, format_datetime_br,
)

TENANT = "tenant-1"
NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)

WHATSAPP_CONFIG = {
    'is_enabled': True, 'instance_id': "inst", 'instance_token': "tok", 'client_token': "client",
    'connection_status': "connected", 'phone_number': "5511999998888",
}


def make_task(task_id="task-1", **overrides) -> AgendaTask:
    data = {'id': task_id, 'tenant_id': TENANT, 'title': "Pagar fornecedor", 'due_at': NOW}
    data.update(overrides)
    return AgendaTask(**data)


def make_reminder(reminder_id="rem-1", task_id="task-1", tenant_id=TENANT) -> AgendaReminder:
    return AgendaReminder(id=reminder_id, tenant_id=tenant_id, task_id=task_id, remind_at=NOW)


class TestRecurrence:

    def test_add_months_clamps_day(self):
        assert add_months(datetime(2026, 1, 31), 1) == datetime(2026, 2, 28)
        assert add_months(datetime(2028, 1, 31), 1) == datetime(2028, 2, 29)

    def test_add_months_crosses_year(self):
        assert add_months(datetime(2026, 11, 15), 3) == datetime(2027, 2, 15)

    @pytest.mark.parametrize("kind,interval,expected", [
        ("daily", 2, datetime(2026, 3, 12, 15, 0, tzinfo=timezone.utc)),
        ("weekly", 1, datetime(2026, 3, 17, 15, 0, tzinfo=timezone.utc)),
        ("monthly", 1, datetime(2026, 4, 10, 15, 0, tzinfo=timezone.utc)),
    ])
    def test_next_due_at(self, kind, interval, expected):
        assert calculate_next_due_at(NOW, Recurrence(type=kind, interval=interval)) == expected

    def test_format_in_sao_paulo_time(self):
        assert format_datetime_br(NOW) == "10/03/2026, 12:00"

    def test_message_includes_description(self):
        message = build_reminder_message(make_task(description="Boleto vence hoje"))

        assert "*Pagar fornecedor*" in message
        assert "📝 Boleto vence hoje" in message


class TestTaskOperations:

    def test_create_task(self, tenant_ctx):
        repo = MagicMock()
        service = AgendaService(repo=repo, integrations=MagicMock())

        service.create_task(tenant_ctx, TaskCreate(title=" Reunião ", due_at=NOW, reminder_offsets=[10, 60, 10]))

        values = repo.create_task.call_args[0][0]
        assert values['title'] == "Reunião"
        assert values['reminder_offsets'] == [60, 10]
        assert values['recurrence'] is None

    def test_recurring_needs_recurrence(self, tenant_ctx):
        service = AgendaService(repo=MagicMock(), integrations=MagicMock())

        with pytest.raises(ValidationError):
            service.create_task(tenant_ctx, TaskCreate(title="X", due_at=NOW, is_recurring=True))

    def test_complete_missing_task(self, tenant_ctx):
        repo = MagicMock()
        repo.update_task_status.return_value = None

        with pytest.raises(NotFoundError):
            AgendaService(repo=repo, integrations=MagicMock()).complete_task(tenant_ctx, "missing")


class TestDispatchReminders:

    @pytest.fixture
    def connector(self):
        connector = MagicMock()
        connector.send_text = AsyncMock(return_value=WhatsAppSendResult(success=True, message_id="m1"))
        return connector

    def build(self, reminders, tasks, connector, config=WHATSAPP_CONFIG):
        repo = MagicMock()
        repo.find_due_reminders.return_value = reminders
        repo.find_tasks.return_value = tasks
        integrations = MagicMock()
        integrations.get_whatsapp_config.return_value = config
        service = AgendaService(repo=repo, integrations=integrations, whatsapp_factory=lambda cfg: connector)
        return service, repo

    @pytest.mark.asyncio
    async def test_nothing_due(self, connector):
        service, _ = self.build([], [], connector)

        result = await service.dispatch_reminders(now=NOW)

        assert result.to_dict()['message'] == "No pending reminders"
        assert result.total == 0

    @pytest.mark.asyncio
    async def test_sends_and_records(self, connector):
        # Arrange
        service, repo = self.build([make_reminder()], [make_task()], connector)

        # Act
        result = await service.dispatch_reminders(now=NOW)

        # Assert
        assert result.dispatched == 1
        assert result.failed == 0
        assert connector.send_text.await_args[0][0] == "5511999998888"
        args, kwargs = repo.update_reminder.call_args
        assert args == ("rem-1", "sent")
        assert kwargs['sent_at'] is not None
        assert 'message' not in result.to_dict()

    @pytest.mark.asyncio
    async def test_outcomes_per_reminder(self, connector):
        """Missing task fails, completed task is skipped"""
        reminders = [make_reminder("r1", "gone"), make_reminder("r2", "done")]
        service, _ = self.build(reminders, [make_task("done", status="completed")], connector)

        result = await service.dispatch_reminders(now=NOW)

        assert result.results == [
            {'reminder_id': "r1", 'status': "failed", 'error': "task_not_found"},
            {'reminder_id': "r2", 'status': "skipped", 'error': "task_completed"},
        ]
        assert result.failed == 1
        connector.send_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_whatsapp_not_configured(self, connector):
        service, _ = self.build([make_reminder()], [make_task()], connector,
                                config={**WHATSAPP_CONFIG, 'connection_status': "disconnected"})

        result = await service.dispatch_reminders(now=NOW)

        assert result.results[0]['error'] == "whatsapp_not_configured"

    @pytest.mark.asyncio
    async def test_provider_error_is_recorded(self, connector):
        connector.send_text.return_value = WhatsAppSendResult(success=False, error="Z-API error: 500")
        service, repo = self.build([make_reminder()], [make_task()], connector)

        result = await service.dispatch_reminders(now=NOW)

        assert result.failed == 1
        assert repo.update_reminder.call_args[1]['last_error'] == "Z-API error: 500"

    @pytest.mark.asyncio
    async def test_task_fetch_error_fails_tenant_batch(self, connector):
        service, repo = self.build([make_reminder("r1"), make_reminder("r2")], [], connector)
        repo.find_tasks.side_effect = Exception("connection reset")

        result = await service.dispatch_reminders(now=NOW)

        assert result.failed == 2
        assert {r['error'] for r in result.results} == {"task_fetch_error"}

    @pytest.mark.asyncio
    async def test_past_due_recurring_task_rolls_over(self, connector):
        task = make_task(is_recurring=True, recurrence=Recurrence(type="weekly"))
        service, repo = self.build([make_reminder()], [task], connector)

        await service.dispatch_reminders(now=NOW)

        next_due = repo.create_next_occurrence.call_args[0][1]
        assert next_due == datetime(2026, 3, 17, 15, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_failed_status_write_does_not_stop_the_batch(self, connector):
        # Arrange
        reminders = [make_reminder("r1"), make_reminder("r2")]
        service, repo = self.build(reminders, [make_task()], connector)
        repo.update_reminder.side_effect = [Exception("could not serialize access"), None]

        # Act
        result = await service.dispatch_reminders(now=NOW)

        # Assert
        assert connector.send_text.await_count == 2
        assert result.dispatched == 2
        assert result.results[0]['record_error'] == "could not serialize access"
        assert 'record_error' not in result.results[1]
        assert repo.update_reminder.call_args[0] == ("r2", "sent")

    @pytest.mark.asyncio
    async def test_config_error_is_isolated_per_tenant(self, connector):
        reminders = [make_reminder("r1", tenant_id="tenant-a"), make_reminder("r2", tenant_id="tenant-b")]
        service, repo = self.build(reminders, [make_task()], connector)

        def whatsapp_config(tenant_id):
            if tenant_id == "tenant-a":
                raise Exception("connection refused")
            return WHATSAPP_CONFIG

        service.integrations.get_whatsapp_config.side_effect = whatsapp_config

        result = await service.dispatch_reminders(now=NOW)

        assert result.results == [
            {'reminder_id': "r1", 'status': "failed", 'error': "whatsapp_config_error"},
            {'reminder_id': "r2", 'status': "sent"},
        ]
        assert connector.send_text.await_count == 1

    @pytest.mark.asyncio
    async def test_unexpected_tenant_error_fails_only_unrecorded_reminders(self, connector):
        reminders = [make_reminder("r1", tenant_id="tenant-a"), make_reminder("r2", tenant_id="tenant-b")]
        service, _ = self.build(reminders, [make_task()], connector)

        def whatsapp_factory(config):
            if config['instance_id'] == "broken":
                raise RuntimeError("bad instance")
            return connector

        configs = {'tenant-a': {**WHATSAPP_CONFIG, 'instance_id': "broken"}, 'tenant-b': WHATSAPP_CONFIG}
        service.integrations.get_whatsapp_config.side_effect = configs.get
        service.whatsapp_factory = whatsapp_factory

        result = await service.dispatch_reminders(now=NOW)

        assert result.failed == 1
        assert result.dispatched == 1
        assert result.results[0] == {'reminder_id': "r1", 'status': "failed", 'error': "tenant_dispatch_error"}
