"""
Shipment Domain Models

Shipments of an order, the tracking events reported by the carrier and the
normalized delivery status vocabulary shared by every carrier adapter.

Author: Backoffice API team
Date: 2026-02-12
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime

DELIVERY_STATUSES = (
    "label_created", "posted", "in_transit", "out_for_delivery",
    "delivered", "failed", "returned", "canceled", "unknown",
)

# Statuses after which a shipment is no longer polled
FINAL_STATUSES = ("delivered", "returned", "canceled")

# Shipment delivery_status -> orders.shipping_status
DELIVERY_TO_SHIPPING_STATUS = {
    "label_created": "processing",
    "posted": "shipped",
    "in_transit": "in_transit",
    "out_for_delivery": "out_for_delivery",
    "delivered": "delivered",
    "failed": "failed",
    "returned": "returned",
    "canceled": "pending",
    "unknown": "pending",
}


class TrackingEvent(BaseModel):
    """
    One carrier event, normalized

    provider_event_id is stable across polls so the same event is stored once
    per shipment.
    """

    provider_event_id: str
    status: str = "unknown"
    description: str = "Evento"
    location: Optional[str] = None
    occurred_at: datetime


class Shipment(BaseModel):
    """
    Shipment domain model

    Fields:
        carrier: Free text as typed by the merchant ('Correios', 'SEDEX', 'Loggi')
        delivery_status: One of DELIVERY_STATUSES
        next_poll_at: When the tracking job should look at it again
        poll_error_count: Consecutive adapter failures, polling stops at 10
    """

    id: str
    tenant_id: str
    order_id: str
    tracking_code: Optional[str] = None
    carrier: Optional[str] = None
    delivery_status: str = "label_created"
    last_status_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    last_polled_at: Optional[datetime] = None
    next_poll_at: Optional[datetime] = None
    poll_error_count: int = 0
    last_poll_error: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


class ShipmentCreate(BaseModel):
    order_id: str
    tracking_code: str = Field(..., min_length=4)
    carrier: Optional[str] = None


class ShipmentEventRecord(BaseModel):
    """Stored shipment_events row"""
    id: str
    shipment_id: str
    status: str
    description: Optional[str] = None
    location: Optional[str] = None
    occurred_at: datetime
    provider_event_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


def shipping_status_for(delivery_status: str) -> str:
    return DELIVERY_TO_SHIPPING_STATUS.get(delivery_status, "pending")


def latest_event(events: List[TrackingEvent]) -> Optional[TrackingEvent]:
    if not events:
        return None
    return max(events, key=lambda e: e.occurred_at)
