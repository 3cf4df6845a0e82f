"""
Creatives API Endpoints
Video generation jobs (fal.ai), processed by the creative-process job

Author: Backoffice API team
Date: 2026-02-14
"""
from fastapi import APIRouter, Depends, HTTPException

from backoffice.core.auth import TenantContext, get_tenant_context
from backoffice.core.errors import BackofficeError
from backoffice.domain.creative import CreativeJobCreate
from backoffice.services.creative_service import CreativeService

router = APIRouter()


def get_creative_service() -> CreativeService:
    return CreativeService()


@router.post("/jobs", status_code=202)
async def enqueue_job(
    request: CreativeJobCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: CreativeService = Depends(get_creative_service)
):
    """Queue a job, the worker picks it up on its next run"""
    try:
        job = service.enqueue(ctx, request)
        return {"status": "success", "data": job.to_dict()}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error queueing creative job: {str(e)}")


@router.get("/jobs/{job_id}")
async def get_job(
    job_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: CreativeService = Depends(get_creative_service)
):
    try:
        job = service.get(ctx, job_id)
        return {"status": "success", "data": job.to_dict()}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error fetching creative job: {str(e)}")
