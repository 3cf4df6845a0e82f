"""
Fiscal API Endpoints
NF-e drafts from orders and their lifecycle on Focus NFe

Endpoints:
- POST /api/v1/fiscal/invoices/draft            - Create or refresh the draft of an order
- POST /api/v1/fiscal/invoices/{id}/emit        - Submit to SEFAZ through Focus NFe
- GET  /api/v1/fiscal/invoices/{id}/status      - Poll authorization status
- POST /api/v1/fiscal/invoices/{id}/cancel      - Cancel an authorized NF-e

Author: Backoffice API team
Date: 2026-02-13
"""
from fastapi import APIRouter, Depends, HTTPException

from backoffice.core.auth import TenantContext, get_tenant_context
from backoffice.core.errors import BackofficeError
from backoffice.domain.fiscal import DraftCreate, InvoiceCancel
from backoffice.services.fiscal_service import FiscalService

router = APIRouter()


def get_fiscal_service() -> FiscalService:
    return FiscalService()


@router.post("/invoices/draft")
async def create_draft(
    request: DraftCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: FiscalService = Depends(get_fiscal_service)
):
    try:
        draft = service.create_draft(ctx, request)
        return {"status": "success", "data": draft}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error creating NF-e draft: {str(e)}")


@router.post("/invoices/{invoice_id}/emit")
async def emit_invoice(
    invoice_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: FiscalService = Depends(get_fiscal_service)
):
    """Only draft or rejected invoices can be (re)submitted"""
    try:
        result = await service.emit(ctx, invoice_id)
        return {"status": "success", "data": result}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error emitting NF-e: {str(e)}")


@router.get("/invoices/{invoice_id}/status")
async def get_invoice_status(
    invoice_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: FiscalService = Depends(get_fiscal_service)
):
    try:
        result = await service.get_status(ctx, invoice_id)
        return {"status": "success", "data": result}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error fetching NF-e status: {str(e)}")


@router.post("/invoices/{invoice_id}/cancel")
async def cancel_invoice(
    invoice_id: str,
    request: InvoiceCancel,
    ctx: TenantContext = Depends(get_tenant_context),
    service: FiscalService = Depends(get_fiscal_service)
):
    try:
        result = await service.cancel(ctx, invoice_id, request.justificativa)
        return {"status": "success", "data": result}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error cancelling NF-e: {str(e)}")
