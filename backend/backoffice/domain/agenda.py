"""
Agenda Domain Models

Tasks with due dates and the WhatsApp reminders scheduled before them.

Author: Backoffice API team
Date: 2026-02-11
"""
from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List
from datetime import datetime

RECURRENCE_TYPES = ("daily", "weekly", "monthly")


class Recurrence(BaseModel):
    type: str = Field(..., description="daily, weekly or monthly")
    interval: int = Field(1, ge=1)


class AgendaTask(BaseModel):
    """
    Agenda task

    Fields:
        status: pending / completed / cancelled
        recurrence: Set only when is_recurring, next occurrence is created
            by the reminder dispatcher once the task is past due
        reminder_offsets: Minutes before due_at at which to remind
    """

    id: str
    tenant_id: str
    created_by: Optional[str] = None
    title: str
    description: Optional[str] = None
    due_at: datetime
    status: str = "pending"
    is_recurring: bool = False
    recurrence: Optional[Recurrence] = None
    reminder_offsets: Optional[List[int]] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


class AgendaReminder(BaseModel):
    id: str
    tenant_id: str
    task_id: str
    channel: str = "whatsapp"
    remind_at: datetime
    status: str = "pending"
    sent_at: Optional[datetime] = None
    last_error: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    due_at: datetime
    is_recurring: bool = False
    recurrence: Optional[Recurrence] = None
    reminder_offsets: List[int] = Field(default_factory=list)

    @field_validator("reminder_offsets")
    @classmethod
    def offsets_not_negative(cls, value: List[int]) -> List[int]:
        if any(offset < 0 for offset in value):
            raise ValueError("reminder offsets must be >= 0")
        return sorted(set(value), reverse=True)

    @field_validator("recurrence")
    @classmethod
    def known_recurrence(cls, value: Optional[Recurrence]) -> Optional[Recurrence]:
        if value is not None and value.type not in RECURRENCE_TYPES:
            raise ValueError(f"recurrence type must be one of {', '.join(RECURRENCE_TYPES)}")
        return value
