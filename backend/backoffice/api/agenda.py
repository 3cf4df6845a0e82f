"""
Agenda API Endpoints
Tasks with WhatsApp reminders

Author: Backoffice API team
Date: 2026-02-11
"""
from fastapi import APIRouter, Depends, HTTPException

from backoffice.core.auth import TenantContext, get_tenant_context
from backoffice.core.errors import BackofficeError
from backoffice.domain.agenda import TaskCreate
from backoffice.services.agenda_service import AgendaService

router = APIRouter()


def get_agenda_service() -> AgendaService:
    return AgendaService()


@router.post("/tasks", status_code=201)
async def create_task(
    request: TaskCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: AgendaService = Depends(get_agenda_service)
):
    """Create a task and one reminder per offset (minutes before due_at)"""
    try:
        task = service.create_task(ctx, request)
        return {"status": "success", "data": task.to_dict()}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error creating task: {str(e)}")


@router.post("/tasks/{task_id}/complete")
async def complete_task(
    task_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: AgendaService = Depends(get_agenda_service)
):
    try:
        task = service.complete_task(ctx, task_id)
        return {"status": "success", "data": task.to_dict()}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error completing task: {str(e)}")


@router.post("/tasks/{task_id}/cancel")
async def cancel_task(
    task_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: AgendaService = Depends(get_agenda_service)
):
    try:
        task = service.cancel_task(ctx, task_id)
        return {"status": "success", "data": task.to_dict()}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error cancelling task: {str(e)}")
