"""
Customer Domain Models

Represents customers of a tenant's store, their addresses and notes.

Author: Backoffice API team
Date: 2026-02-09
"""
from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List
from datetime import datetime, date


BRAZIL_STATES = {
    'AC', 'AL', 'AP', 'AM', 'BA', 'CE', 'DF', 'ES', 'GO', 'MA', 'MT', 'MS', 'MG', 'PA',
    'PB', 'PR', 'PE', 'PI', 'RJ', 'RN', 'RS', 'RO', 'RR', 'SC', 'SP', 'SE', 'TO',
}


class Customer(BaseModel):
    """
    Customer domain model

    Fields:
        id: Customer UUID
        tenant_id: Owning tenant
        email: Normalized (lower-case, trimmed) e-mail, unique per tenant
        full_name: Display name
        person_type: 'pf' (pessoa física) or 'pj' (pessoa jurídica)
        cpf / cnpj: Digits only
        status: 'active' or 'inactive' (soft deleted)
    """

    id: str = Field(..., description="Customer ID")
    tenant_id: str = Field(..., description="Tenant ID")
    email: str = Field(..., description="Normalized e-mail")
    full_name: str = Field(..., description="Full name")
    phone: Optional[str] = None
    cpf: Optional[str] = None
    cnpj: Optional[str] = None
    person_type: str = "pf"
    company_name: Optional[str] = None
    ie: Optional[str] = None
    state_registration_is_exempt: bool = False
    status: str = "active"
    birth_date: Optional[date] = None
    gender: Optional[str] = None
    notes: Optional[str] = None
    accepts_marketing: bool = False
    accepts_email_marketing: bool = False
    accepts_sms_marketing: bool = False
    accepts_whatsapp_marketing: bool = False
    loyalty_tier: Optional[str] = None
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, coerce_numbers_to_str=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


class CustomerAddress(BaseModel):
    """Shipping / billing address. postal_code is stored as 8 digits."""

    id: str
    customer_id: str
    label: str = "Principal"
    recipient_name: Optional[str] = None
    street: str
    number: str
    complement: Optional[str] = None
    neighborhood: str
    city: str
    state: str
    postal_code: str
    country: str = "Brasil"
    is_default: bool = False
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, coerce_numbers_to_str=True)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


# ============================================================================
# Input models
# ============================================================================

class CustomerCreate(BaseModel):
    email: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    cpf: Optional[str] = None
    cnpj: Optional[str] = None
    person_type: str = "pf"
    company_name: Optional[str] = None
    ie: Optional[str] = None
    birth_date: Optional[date] = None
    gender: Optional[str] = None
    notes: Optional[str] = None
    accepts_marketing: bool = False
    accepts_email_marketing: bool = False
    accepts_sms_marketing: bool = False
    accepts_whatsapp_marketing: bool = False


CUSTOMER_STATUSES = ('active', 'inactive')


class CustomerUpdate(BaseModel):
    """
    Partial update body. Only the fields a caller sent are applied
    (model_dump(exclude_unset=True)); unknown fields are ignored.
    """
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    cpf: Optional[str] = None
    cnpj: Optional[str] = None
    person_type: Optional[str] = None
    company_name: Optional[str] = None
    ie: Optional[str] = None
    state_registration_is_exempt: Optional[bool] = None
    birth_date: Optional[date] = None
    gender: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    accepts_marketing: Optional[bool] = None
    accepts_email_marketing: Optional[bool] = None
    accepts_sms_marketing: Optional[bool] = None
    accepts_whatsapp_marketing: Optional[bool] = None
    loyalty_tier: Optional[str] = None

    model_config = ConfigDict(coerce_numbers_to_str=True)

    @field_validator("status")
    @classmethod
    def known_status(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in CUSTOMER_STATUSES:
            raise ValueError(f"status must be one of {', '.join(CUSTOMER_STATUSES)}")
        return value


class AddressCreate(BaseModel):
    label: str = "Principal"
    recipient_name: Optional[str] = None
    street: Optional[str] = None
    number: Optional[str] = None
    complement: Optional[str] = None
    neighborhood: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    is_default: bool = False


class TagsUpdate(BaseModel):
    tag_ids: List[str] = Field(default_factory=list)


class NoteCreate(BaseModel):
    content: str = ""
