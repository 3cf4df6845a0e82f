"""
Notifications API Endpoints
Queue an email or WhatsApp message for the notifications runner

Author: Backoffice API team
Date: 2026-02-15
"""
from fastapi import APIRouter, Depends, HTTPException

from backoffice.core.auth import TenantContext, get_tenant_context
from backoffice.core.errors import BackofficeError
from backoffice.domain.notification import NotificationCreate
from backoffice.services.notification_service import NotificationService

router = APIRouter()


def get_notification_service() -> NotificationService:
    return NotificationService()


@router.post("/", status_code=202)
async def enqueue_notification(
    request: NotificationCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: NotificationService = Depends(get_notification_service)
):
    """
    Queue a notification

    With template_key the subject/body come from email_templates (tenant
    template first, platform default second), rendered with variables.
    """
    try:
        notification = service.enqueue(ctx, request)
        return {"status": "success", "data": notification.to_dict()}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error queueing notification: {str(e)}")
