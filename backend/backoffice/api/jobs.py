"""
Jobs API - Scheduled background work
Designed to be called by cron-job.org, pg_cron or similar services

Endpoints:
- POST /api/v1/jobs/agenda-reminders    - Send due agenda reminders (WhatsApp)
- POST /api/v1/jobs/tracking-poll       - Poll carriers for due shipments
- POST /api/v1/jobs/creative-process    - Run queued creative jobs
- POST /api/v1/jobs/notifications-run   - Deliver due notifications

Security:
- Every endpoint requires the X-Cron-Key header matching CRON_API_KEY

Failures inside a job are reported in the JSON body ({"success": false, ...})
instead of raising, so the scheduler log shows what happened.

Author: Backoffice API team
Date: 2026-02-17
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from backoffice.core.auth import verify_cron_key
from backoffice.domain.creative import ProcessRequest
from backoffice.domain.notification import RunRequest
from backoffice.services.agenda_service import AgendaService
from backoffice.services.creative_service import CreativeService
from backoffice.services.notification_service import NotificationService
from backoffice.services.tracking_service import TrackingService

logger = logging.getLogger(__name__)
router = APIRouter(dependencies=[Depends(verify_cron_key)])


def get_agenda_service() -> AgendaService:
    return AgendaService()


def get_tracking_service() -> TrackingService:
    return TrackingService()


def get_creative_service() -> CreativeService:
    return CreativeService()


def get_notification_service() -> NotificationService:
    return NotificationService()


def _job_failed(job: str, error: Exception) -> JSONResponse:
    logger.error(f"Job {job} failed: {error}")
    return JSONResponse(status_code=500, content={"success": False, "error": str(error)})


@router.post("/agenda-reminders")
async def run_agenda_reminders(service: AgendaService = Depends(get_agenda_service)):
    try:
        result = await service.dispatch_reminders()
        return result.to_dict()
    except Exception as e:
        return _job_failed("agenda-reminders", e)


@router.post("/tracking-poll")
async def run_tracking_poll(service: TrackingService = Depends(get_tracking_service)):
    """Polls at most TRACKING_MAX_PER_RUN shipments whose next_poll_at is due"""
    try:
        result = await service.poll()
        return result.to_dict()
    except Exception as e:
        return _job_failed("tracking-poll", e)


@router.post("/creative-process")
async def run_creative_process(
    request: Optional[ProcessRequest] = None,
    service: CreativeService = Depends(get_creative_service)
):
    """Process one job (job_id) or the oldest queued jobs (limit)"""
    request = request or ProcessRequest()
    try:
        result = await service.process_queue(job_id=request.job_id, limit=request.limit)
        return result.to_dict()
    except Exception as e:
        return _job_failed("creative-process", e)


@router.post("/notifications-run")
async def run_notifications(
    request: Optional[RunRequest] = None,
    service: NotificationService = Depends(get_notification_service)
):
    request = request or RunRequest()
    try:
        result = await service.run(limit=request.limit, tenant_id=request.tenant_id)
        return result.to_dict()
    except Exception as e:
        return _job_failed("notifications-run", e)
