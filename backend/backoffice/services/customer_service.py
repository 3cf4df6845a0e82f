"""
Customer Service
Canonical write path for customers: validation, audit trail and events.

Every mutation goes through here so that core_audit_log and events_inbox
stay consistent with the customers table.

Author: Backoffice API team
Date: 2026-02-09
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from backoffice.core.auth import TenantContext
from backoffice.core.errors import ConflictError, NotFoundError, ValidationError
from backoffice.core.text import only_digits
from backoffice.domain.customer import (
    AddressCreate, BRAZIL_STATES, Customer, CustomerAddress, CustomerCreate, CustomerUpdate,
)
from backoffice.repositories.customer_repository import CustomerRepository
from backoffice.repositories.event_repository import EventRepository

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_postal_code(postal_code: Optional[str]) -> str:
    """
    Validate a CEP and return its 8 digits.

    Accepts '01310-100', '01310 100' or '01310100'.
    """
    raw = (postal_code or "").replace("-", "").replace(" ", "")
    if len(raw) != 8 or not raw.isdigit():
        raise ValidationError("CEP inválido: informe 8 dígitos", field="postal_code")
    return raw


class CustomerService:
    """
    Service for customer operations

    Handles:
    - Create / update / soft delete with audit log
    - Addresses (single default per customer)
    - Tags and notes
    """

    def __init__(self, repo: CustomerRepository = None, events: EventRepository = None):
        self.repo = repo or CustomerRepository()
        self.events = events or EventRepository()

    def _get_or_404(self, ctx: TenantContext, customer_id: str) -> Customer:
        customer = self.repo.find_by_id(ctx.tenant_id, customer_id)
        if not customer:
            raise NotFoundError("Cliente não encontrado")
        return customer

    def _validate_documents(self, cpf: Optional[str], cnpj: Optional[str]) -> Dict[str, Optional[str]]:
        result = {}
        if cpf:
            digits = only_digits(cpf)
            if len(digits) != 11:
                raise ValidationError("CPF deve ter 11 dígitos", field="cpf")
            result['cpf'] = digits
        if cnpj:
            digits = only_digits(cnpj)
            if len(digits) != 14:
                raise ValidationError("CNPJ deve ter 14 dígitos", field="cnpj")
            result['cnpj'] = digits
        return result

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, ctx: TenantContext, customer_id: str) -> Customer:
        return self._get_or_404(ctx, customer_id)

    def list(self, ctx: TenantContext, search: Optional[str] = None, status: Optional[str] = None,
             include_deleted: bool = False, limit: int = 50, offset: int = 0) -> Tuple[List[Customer], int]:
        return self.repo.find_all(
            ctx.tenant_id,
            search=search,
            status=status,
            include_deleted=include_deleted,
            limit=limit,
            offset=offset
        )

    def list_addresses(self, ctx: TenantContext, customer_id: str) -> List[CustomerAddress]:
        self._get_or_404(ctx, customer_id)
        return self.repo.find_addresses(customer_id)

    # =========================================================================
    # Mutations
    # =========================================================================

    def create(self, ctx: TenantContext, data: CustomerCreate) -> Customer:
        if not data.email or not data.email.strip():
            raise ValidationError("Email é obrigatório", field="email")
        if not data.full_name or not data.full_name.strip():
            raise ValidationError("Nome é obrigatório", field="full_name")

        email = normalize_email(data.email)
        if self.repo.find_by_email(ctx.tenant_id, email):
            raise ConflictError("Já existe um cliente com este email", code="DUPLICATE_EMAIL")

        values = data.model_dump(exclude_none=True)
        values.update(self._validate_documents(data.cpf, data.cnpj))
        values['email'] = email
        values['full_name'] = data.full_name.strip()
        values['status'] = 'active'

        customer = self.repo.insert(ctx.tenant_id, values)
        logger.info(f"Customer {customer.id} created for tenant {ctx.tenant_id}")

        self.events.audit(
            ctx.tenant_id, 'customer', customer.id, 'create',
            after=customer.to_dict(),
            changed_fields=list(values.keys()),
            actor_user_id=ctx.user_id
        )
        self.events.emit(
            ctx.tenant_id, 'customer.created',
            {'customer_id': customer.id, 'email': customer.email, 'full_name': customer.full_name},
            idempotency_key=f"customer_created_{customer.id}",
            subject=customer.id
        )
        return customer

    def update(self, ctx: TenantContext, customer_id: str, data: Dict[str, Any]) -> Customer:
        """
        Apply allowed fields that differ from the stored values.

        The body is parsed through CustomerUpdate first so values compare in
        their stored types (a '1990-01-02' string equals date(1990, 1, 2)).
        Unknown fields are ignored. If nothing changes, the stored customer is
        returned and no audit row is written.
        """
        before = self._get_or_404(ctx, customer_id)

        try:
            incoming = CustomerUpdate.model_validate(data).model_dump(exclude_unset=True)
        except PydanticValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error['loc'])
            raise ValidationError(f"Campo inválido: {field}", field=field)

        if 'email' in incoming:
            if not incoming['email'] or not str(incoming['email']).strip():
                raise ValidationError("Email é obrigatório", field="email")
            incoming['email'] = normalize_email(incoming['email'])
            if incoming['email'] != before.email:
                existing = self.repo.find_by_email(ctx.tenant_id, incoming['email'])
                if existing and existing.id != customer_id:
                    raise ConflictError("Já existe um cliente com este email", code="DUPLICATE_EMAIL")
        if 'full_name' in incoming and not (incoming['full_name'] or "").strip():
            raise ValidationError("Nome é obrigatório", field="full_name")
        incoming.update(self._validate_documents(incoming.get('cpf'), incoming.get('cnpj')))

        current = before.model_dump()
        changes = {k: v for k, v in incoming.items() if current.get(k) != v}

        if not changes:
            return before

        after = self.repo.update(ctx.tenant_id, customer_id, changes)
        version = after.updated_at.isoformat() if after.updated_at else ""

        self.events.audit(
            ctx.tenant_id, 'customer', customer_id, 'update',
            before=before.to_dict(),
            after=after.to_dict(),
            changed_fields=list(changes.keys()),
            actor_user_id=ctx.user_id
        )
        self.events.emit(
            ctx.tenant_id, 'customer.updated',
            {'customer_id': customer_id, 'changed_fields': list(changes.keys())},
            idempotency_key=f"customer_updated_{customer_id}_{version}",
            subject=customer_id
        )
        return after

    def delete(self, ctx: TenantContext, customer_id: str, force: bool = False) -> Customer:
        """
        Soft delete: status inactive + deleted_at.

        Customers with orders need force=True; without it a DEPENDENT_ORDERS
        conflict carrying the order count is raised so the UI can warn.
        """
        before = self._get_or_404(ctx, customer_id)

        order_count = self.repo.count_orders(ctx.tenant_id, customer_id)
        if order_count and not force:
            raise ConflictError(
                f"Cliente possui {order_count} pedido(s) vinculados",
                code="DEPENDENT_ORDERS",
                details={"order_count": order_count}
            )

        after = self.repo.update(ctx.tenant_id, customer_id, {
            'status': 'inactive',
            'deleted_at': datetime.now(timezone.utc),
        })
        logger.info(f"Customer {customer_id} soft deleted (orders={order_count})")

        self.events.audit(
            ctx.tenant_id, 'customer', customer_id, 'delete',
            before=before.to_dict(),
            after=after.to_dict(),
            changed_fields=['status', 'deleted_at'],
            actor_user_id=ctx.user_id
        )
        return after

    def add_address(self, ctx: TenantContext, customer_id: str, data: AddressCreate) -> CustomerAddress:
        self._get_or_404(ctx, customer_id)

        for field in ('street', 'number', 'neighborhood', 'city'):
            if not (getattr(data, field) or "").strip():
                raise ValidationError(f"Campo obrigatório: {field}", field=field)

        postal_code = normalize_postal_code(data.postal_code)

        state = (data.state or "").strip().upper()
        if state not in BRAZIL_STATES:
            raise ValidationError("UF inválida", field="state")

        values = data.model_dump()
        values.update({
            'postal_code': postal_code,
            'state': state,
            'country': 'Brasil',
            'label': data.label or 'Principal',
        })

        address = self.repo.insert_address(customer_id, values)

        self.events.audit(
            ctx.tenant_id, 'customer', customer_id, 'add_address',
            after=address.to_dict(),
            changed_fields=['addresses'],
            actor_user_id=ctx.user_id
        )
        return address

    def update_tags(self, ctx: TenantContext, customer_id: str, tag_ids: List[str]) -> List[str]:
        self._get_or_404(ctx, customer_id)
        unique_ids = list(dict.fromkeys(tag_ids))
        self.repo.replace_tags(customer_id, unique_ids)

        self.events.audit(
            ctx.tenant_id, 'customer', customer_id, 'update_tags',
            after={'tag_ids': unique_ids},
            changed_fields=['tags'],
            actor_user_id=ctx.user_id
        )
        return unique_ids

    def add_note(self, ctx: TenantContext, customer_id: str, content: str) -> Dict[str, Any]:
        self._get_or_404(ctx, customer_id)
        if not content or not content.strip():
            raise ValidationError("Nota não pode ser vazia", field="content")

        note = self.repo.insert_note(ctx.tenant_id, customer_id, content.strip(), author_id=ctx.user_id)

        self.events.audit(
            ctx.tenant_id, 'customer', customer_id, 'add_note',
            after={'note_id': str(note['id'])},
            changed_fields=['notes'],
            actor_user_id=ctx.user_id
        )
        return note
