"""
Notification Domain Models

Outgoing e-mail / WhatsApp messages queued in `notifications` and delivered
by the notifications-run job.

Status flow:
    scheduled -> sending -> sent
                         -> retrying -> sending ...
                         -> failed (max_attempts reached)

Author: Backoffice API team
Date: 2026-02-15
"""
from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, Dict, Any
from datetime import datetime

CHANNELS = ("email", "whatsapp")


class Notification(BaseModel):
    """
    Notification domain model

    Fields:
        payload: Rendered content (email_subject, email_body,
            whatsapp_message) plus context ids (order_id, customer_id, rule_type)
        attempt_count: Attempts made so far
        next_attempt_at: Earliest time the runner may pick it up
    """

    id: str
    tenant_id: str
    channel: str
    recipient: str
    template_key: Optional[str] = None
    rule_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: str = "scheduled"
    scheduled_for: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    attempt_count: int = 0
    max_attempts: int = 3
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    sent_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator('payload', mode='before')
    @classmethod
    def null_payload(cls, value):
        return value or {}

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


class NotificationCreate(BaseModel):
    """Either template_key or a literal subject/body (or message for WhatsApp)"""
    channel: str
    recipient: str
    template_key: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    scheduled_for: Optional[datetime] = None
    max_attempts: int = Field(3, ge=1, le=10)


class RunRequest(BaseModel):
    limit: int = Field(25, ge=1, le=200)
    tenant_id: Optional[str] = None
