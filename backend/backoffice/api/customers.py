"""
Customers API Endpoints
Customer records of the current tenant, with addresses, tags and notes

Author: Backoffice API team
Date: 2026-02-09
"""
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from typing import Any, Dict, Optional

from backoffice.core.auth import TenantContext, get_tenant_context
from backoffice.core.errors import BackofficeError
from backoffice.domain.customer import AddressCreate, CustomerCreate, NoteCreate, TagsUpdate
from backoffice.services.customer_service import CustomerService

router = APIRouter()


def get_customer_service() -> CustomerService:
    return CustomerService()


@router.get("/")
async def list_customers(
    search: Optional[str] = Query(None, description="Search by name, email, phone, CPF or CNPJ"),
    status: Optional[str] = Query(None, description="Filter by status (active, inactive)"),
    include_deleted: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    ctx: TenantContext = Depends(get_tenant_context),
    service: CustomerService = Depends(get_customer_service)
):
    """List customers, newest first"""
    try:
        customers, total = service.list(
            ctx,
            search=search,
            status=status,
            include_deleted=include_deleted,
            limit=limit,
            offset=offset
        )

        return {
            "status": "success",
            "total": total,
            "limit": limit,
            "offset": offset,
            "count": len(customers),
            "data": [customer.to_dict() for customer in customers]
        }

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error fetching customers: {str(e)}")


@router.get("/{customer_id}")
async def get_customer(
    customer_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: CustomerService = Depends(get_customer_service)
):
    try:
        customer = service.get(ctx, customer_id)
        return {"status": "success", "data": customer.to_dict()}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error fetching customer: {str(e)}")


@router.post("/", status_code=201)
async def create_customer(
    request: CustomerCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: CustomerService = Depends(get_customer_service)
):
    """
    Create a customer

    Email is unique per tenant (409 DUPLICATE_EMAIL). CPF/CNPJ are stored as
    digits only.
    """
    try:
        customer = service.create(ctx, request)
        return {"status": "success", "data": customer.to_dict()}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error creating customer: {str(e)}")


@router.patch("/{customer_id}")
async def update_customer(
    customer_id: str,
    changes: Dict[str, Any] = Body(...),
    ctx: TenantContext = Depends(get_tenant_context),
    service: CustomerService = Depends(get_customer_service)
):
    """Partial update, unknown fields are ignored"""
    try:
        customer = service.update(ctx, customer_id, changes)
        return {"status": "success", "data": customer.to_dict()}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error updating customer: {str(e)}")


@router.delete("/{customer_id}")
async def delete_customer(
    customer_id: str,
    force: bool = Query(False, description="Delete even when the customer has orders"),
    ctx: TenantContext = Depends(get_tenant_context),
    service: CustomerService = Depends(get_customer_service)
):
    try:
        customer = service.delete(ctx, customer_id, force=force)
        return {"status": "success", "data": customer.to_dict()}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error deleting customer: {str(e)}")


# ============================================================================
# Addresses, tags, notes
# ============================================================================

@router.get("/{customer_id}/addresses")
async def list_addresses(
    customer_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: CustomerService = Depends(get_customer_service)
):
    try:
        addresses = service.list_addresses(ctx, customer_id)
        return {
            "status": "success",
            "count": len(addresses),
            "data": [address.to_dict() for address in addresses]
        }

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error fetching addresses: {str(e)}")


@router.post("/{customer_id}/addresses", status_code=201)
async def add_address(
    customer_id: str,
    request: AddressCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: CustomerService = Depends(get_customer_service)
):
    try:
        address = service.add_address(ctx, customer_id, request)
        return {"status": "success", "data": address.to_dict()}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error adding address: {str(e)}")


@router.put("/{customer_id}/tags")
async def update_tags(
    customer_id: str,
    request: TagsUpdate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: CustomerService = Depends(get_customer_service)
):
    """Replace the customer's tag set"""
    try:
        tag_ids = service.update_tags(ctx, customer_id, request.tag_ids)
        return {"status": "success", "data": {"tag_ids": tag_ids}}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error updating tags: {str(e)}")


@router.post("/{customer_id}/notes", status_code=201)
async def add_note(
    customer_id: str,
    request: NoteCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: CustomerService = Depends(get_customer_service)
):
    try:
        note = service.add_note(ctx, customer_id, request.content)
        return {"status": "success", "data": note}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error adding note: {str(e)}")
