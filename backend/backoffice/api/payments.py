"""
Payments API Endpoints
Pagar.me charges and the Pagar.me webhook

Security:
- POST /charges requires an owner or admin of the tenant
- POST /webhooks/pagarme is public (called by Pagar.me), duplicates are
  detected through the event id

Author: Backoffice API team
Date: 2026-02-16
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from backoffice.core.auth import TenantContext, require_tenant_role
from backoffice.core.errors import BackofficeError
from backoffice.domain.payment import ChargeCreate
from backoffice.services.payment_service import PaymentService

logger = logging.getLogger(__name__)
router = APIRouter()


def get_payment_service() -> PaymentService:
    return PaymentService()


@router.post("/charges", status_code=201)
async def create_charge(
    request: ChargeCreate,
    ctx: TenantContext = Depends(require_tenant_role("owner", "admin")),
    service: PaymentService = Depends(get_payment_service)
):
    """Create a PIX, boleto or credit card charge"""
    try:
        result = await service.create_charge(ctx, request)
        return {"status": "success", "data": result}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error creating charge: {str(e)}")


@router.post("/webhooks/pagarme")
async def pagarme_webhook(
    request: Request,
    service: PaymentService = Depends(get_payment_service)
):
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    try:
        return service.handle_webhook(payload)

    except BackofficeError:
        raise
    except Exception as e:
        logger.error(f"Pagar.me webhook error: {e}")
        raise HTTPException(status_code=500, detail=f"Error processing webhook: {str(e)}")
