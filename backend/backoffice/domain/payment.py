"""
Payment Domain Models

Charges created on Pagar.me (payment_transactions) and the mapping from the
gateway's charge status to transaction, order payment and order statuses.

Author: Backoffice API team
Date: 2026-02-16
"""
from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, Dict, Any, NamedTuple
from datetime import datetime

PAYMENT_METHODS = ("pix", "boleto", "credit_card")


class StatusTransition(NamedTuple):
    transaction: str
    payment: str
    order: Optional[str]
    paid: bool = False


# Pagar.me charge status -> (transaction, orders.payment_status, orders.status)
CHARGE_STATUS_MAP = {
    "paid": StatusTransition("paid", "approved", "paid", paid=True),
    "overpaid": StatusTransition("paid", "approved", "paid", paid=True),
    "pending": StatusTransition("pending", "pending", None),
    "processing": StatusTransition("pending", "pending", None),
    "underpaid": StatusTransition("pending", "pending", None),
    "failed": StatusTransition("failed", "declined", "cancelled"),
    "canceled": StatusTransition("canceled", "declined", "cancelled"),
    "refunded": StatusTransition("refunded", "refunded", None),
    "chargedback": StatusTransition("chargedback", "chargedback", "cancelled"),
    "expired": StatusTransition("expired", "expired", None),
}


class ChargeCustomer(BaseModel):
    name: str
    email: str
    document: str
    phone: Optional[str] = None


class BillingAddress(BaseModel):
    street: str
    number: str
    complement: Optional[str] = None
    neighborhood: str
    city: str
    state: str
    postal_code: str
    country: str = "BR"


class CardData(BaseModel):
    number: str
    holder_name: str
    exp_month: int
    exp_year: int
    cvv: str


class ChargeCreate(BaseModel):
    """
    Charge request

    Fields:
        amount: In cents
        order_id: Order the charge pays for (used as the Pagar.me item code)
    """
    method: str
    amount: int = Field(..., gt=0)
    order_id: Optional[str] = None
    checkout_id: Optional[str] = None
    customer: ChargeCustomer
    billing_address: Optional[BillingAddress] = None
    card: Optional[CardData] = None
    installments: int = Field(1, ge=1, le=12)


class PaymentTransaction(BaseModel):
    id: str
    tenant_id: str
    order_id: Optional[str] = None
    provider: str = "pagarme"
    provider_transaction_id: Optional[str] = None
    method: str
    status: str
    amount: int
    currency: str = "BRL"
    payment_data: Dict[str, Any] = Field(default_factory=dict)
    paid_at: Optional[datetime] = None
    paid_amount: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator('payment_data', mode='before')
    @classmethod
    def null_payment_data(cls, value):
        return value or {}

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")
