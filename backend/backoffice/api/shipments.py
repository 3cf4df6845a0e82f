"""
Shipments API Endpoints
Tracking codes attached to orders and their carrier events

Author: Backoffice API team
Date: 2026-02-12
"""
from fastapi import APIRouter, Depends, HTTPException

from backoffice.core.auth import TenantContext, get_tenant_context
from backoffice.core.errors import BackofficeError
from backoffice.domain.shipment import ShipmentCreate
from backoffice.services.tracking_service import TrackingService

router = APIRouter()


def get_tracking_service() -> TrackingService:
    return TrackingService()


@router.post("/", status_code=201)
async def register_shipment(
    request: ShipmentCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: TrackingService = Depends(get_tracking_service)
):
    """
    Register a tracking code for an order

    Registering the same code for the same order again returns the existing
    shipment.
    """
    try:
        shipment = service.register_shipment(ctx, request)
        return {"status": "success", "data": shipment.to_dict()}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error registering shipment: {str(e)}")


@router.get("/{shipment_id}/events")
async def list_shipment_events(
    shipment_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: TrackingService = Depends(get_tracking_service)
):
    try:
        events = service.list_events(ctx, shipment_id)
        return {
            "status": "success",
            "count": len(events),
            "data": [event.model_dump(mode="json") for event in events]
        }

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error fetching shipment events: {str(e)}")
