"""
Creative Service
Queue and run AI creative generation jobs on fal.ai

Job types:
- product_video: Kling image-to-video from the product image (or a start frame)
- ugc_ai_video / avatar_mascot: Kling avatar from a reference image
- pipeline: custom list of model steps, each fed the previous step's output

Author: Backoffice API team
Date: 2026-02-14
"""
import logging
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from backoffice.connectors.fal_connector import FAL_ENDPOINTS, FalConnector, model_cost
from backoffice.core.auth import TenantContext
from backoffice.core.config import settings
from backoffice.core.errors import IntegrationError, NotFoundError, ValidationError
from backoffice.domain.creative import JOB_TYPES, CreativeJob, CreativeJobCreate
from backoffice.repositories.creative_repository import CreativeRepository

logger = logging.getLogger(__name__)

VIDEO_MOTIONS = {
    'smooth_rotation': "Slow 360 degree rotation, smooth camera movement, subtle reflections",
    'floating': "Gentle floating motion, particles drifting around, ethereal atmosphere",
    'liquid_splash': "Dynamic liquid movement, slow motion splash effect, high-speed capture feel",
    'macro_closeup': "Slow dolly in, focus rack on details, shallow depth of field",
    'tech_premium': "Dramatic reveal, rim lighting changes, sleek movements",
    'clean_studio': "Simple rotation, clean presentation, professional product video",
}

VEO_DURATIONS = (4, 6, 8)


def build_video_prompt(style_preset: Optional[str], base_prompt: Optional[str]) -> str:
    return VIDEO_MOTIONS.get(style_preset or "") or base_prompt or "Natural product presentation"


def build_step_payload(model_id: str, job: CreativeJob, previous_output: Optional[str]) -> Dict[str, Any]:
    """Request body for one fal model, from the job and the previous step's output"""
    opts = job.settings
    first_reference = job.reference_images[0] if job.reference_images else None
    source_video = previous_output or job.reference_video_url

    if model_id == 'pixverse-swap-person':
        return {
            'video_url': source_video,
            'image_url': first_reference,
            'mode': "person",
            'resolution': opts.get('resolution') or "720p",
        }
    if model_id == 'pixverse-swap-bg':
        return {
            'video_url': source_video,
            'image_url': opts.get('background_reference'),
            'mode': "background",
            'resolution': opts.get('resolution') or "720p",
        }
    if model_id == 'f5-tts':
        return {
            'gen_text': opts.get('voice_script') or job.prompt,
            'ref_audio_url': opts.get('voice_reference'),
            'ref_text': opts.get('voice_ref_text'),
            'remove_silence': True,
        }
    if model_id == 'sync-lipsync':
        return {
            'video_url': source_video,
            'audio_url': job.reference_audio_url,
            'sync_mode': opts.get('sync_mode') or "cut_off",
        }
    if model_id.startswith('kling-avatar'):
        return {
            'prompt': job.prompt,
            'image_url': first_reference or job.product_image_url,
            'audio_url': job.reference_audio_url,
            'duration': opts.get('duration') or 10,
            'aspect_ratio': opts.get('aspect_ratio') or "9:16",
        }
    if model_id == 'kling-i2v-pro':
        return {
            'prompt': job.prompt,
            'start_image_url': opts.get('start_frame') or job.product_image_url,
            'end_image_url': opts.get('end_frame'),
            'duration': str(opts.get('duration') or 5),
            'aspect_ratio': opts.get('aspect_ratio') or "16:9",
            'negative_prompt': opts.get('negative_prompt'),
        }
    if model_id == 'veo31-text-video':
        try:
            requested = float(opts.get('duration') or 8)
        except (TypeError, ValueError):
            requested = 8
        closest = min(VEO_DURATIONS, key=lambda d: abs(d - requested))
        return {
            'prompt': job.prompt,
            'duration': f"{closest}s",
            'aspect_ratio': opts.get('aspect_ratio') or "16:9",
        }
    return {'prompt': job.prompt}


def _default_fal_factory() -> FalConnector:
    if not settings.FAL_API_KEY:
        raise IntegrationError("FAL_API_KEY não configurada")
    return FalConnector(settings.FAL_API_KEY)


@dataclass
class CreativeStats:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class CreativeProcessResult:
    success: bool
    stats: CreativeStats = field(default_factory=CreativeStats)
    duration_ms: int = 0
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data['message'] is None:
            del data['message']
        return data


class CreativeService:
    """
    Service for creative jobs

    Handles:
    - Enqueueing jobs for a tenant
    - Processing the queue (cron or manual trigger)
    """

    def __init__(self, repo: CreativeRepository = None, fal_factory: Callable[[], FalConnector] = _default_fal_factory):
        self.repo = repo or CreativeRepository()
        self.fal_factory = fal_factory

    def enqueue(self, ctx: TenantContext, data: CreativeJobCreate) -> CreativeJob:
        if data.type not in JOB_TYPES:
            raise ValidationError(f"Tipo de criativo inválido: {data.type}", field="type")
        if data.type == "pipeline" and not data.pipeline_steps:
            raise ValidationError("Pipeline sem etapas", field="pipeline_steps")

        job = self.repo.insert(ctx.tenant_id, ctx.user_id, data)
        logger.info(f"Creative job {job.id} queued ({job.type}) for tenant {ctx.tenant_id}")
        return job

    def get(self, ctx: TenantContext, job_id: str) -> CreativeJob:
        job = self.repo.find_by_id(ctx.tenant_id, job_id)
        if not job:
            raise NotFoundError("Job não encontrado")
        return job

    # =========================================================================
    # Pipelines
    # =========================================================================

    async def _call(self, fal: FalConnector, model_id: str, payload: Dict[str, Any]) -> Optional[str]:
        result = await fal.run(model_id, payload)
        if not result.success:
            raise IntegrationError(result.error or f"Fal model {model_id} failed")
        return result.url

    async def _product_video(self, job: CreativeJob, fal: FalConnector) -> Tuple[List[str], int]:
        start_image = job.settings.get('start_frame') or job.product_image_url
        if not start_image:
            raise ValidationError("start_image_url é obrigatório para Kling I2V")

        payload = build_step_payload('kling-i2v-pro', job, None)
        payload['prompt'] = build_video_prompt(job.settings.get('style_preset'), job.prompt)
        payload['start_image_url'] = start_image

        url = await self._call(fal, 'kling-i2v-pro', payload)
        if not url:
            return [], 0
        return [url], model_cost('kling-i2v-pro')

    async def _avatar_video(self, job: CreativeJob, fal: FalConnector) -> Tuple[List[str], int]:
        model_id = 'kling-avatar'
        if job.type == "avatar_mascot":
            model_id = 'kling-avatar-mascot-std' if job.settings.get('quality') == "standard" else 'kling-avatar-mascot-pro'

        payload = build_step_payload(model_id, job, None)
        if not payload.get('image_url'):
            raise ValidationError("Imagem de referência é obrigatória para o avatar")

        url = await self._call(fal, model_id, payload)
        if not url:
            return [], 0
        return [url], model_cost(model_id)

    async def _pipeline(self, job: CreativeJob, fal: FalConnector) -> Tuple[List[str], int]:
        urls = []
        cost = 0
        previous_output = job.reference_video_url

        logger.info(f"Pipeline for job {job.id} has {len(job.pipeline_steps)} steps")

        for step in job.pipeline_steps:
            if step.model_id not in FAL_ENDPOINTS:
                logger.warning(f"Unknown model: {step.model_id}, skipping step {step.step_id}")
                continue

            logger.info(f"Job {job.id}: executing step {step.step_id} ({step.model_id})")
            url = await self._call(fal, step.model_id, build_step_payload(step.model_id, job, previous_output))
            if url:
                urls.append(url)
                previous_output = url
            cost += model_cost(step.model_id)

        return urls, cost

    async def run_job(self, job: CreativeJob) -> Tuple[List[str], int]:
        """Run the pipeline for a job and return (output urls, cost in cents)"""
        fal = self.fal_factory()

        if job.type == "product_video":
            return await self._product_video(job, fal)
        if job.type in ("ugc_ai_video", "avatar_mascot"):
            return await self._avatar_video(job, fal)
        return await self._pipeline(job, fal)

    # =========================================================================
    # Queue
    # =========================================================================

    async def process_queue(self, job_id: Optional[str] = None, limit: int = 5) -> CreativeProcessResult:
        start_time = time.time()
        result = CreativeProcessResult(success=True)
        stats = result.stats

        jobs = self.repo.find_queued(job_id=job_id, limit=limit)
        if not jobs:
            result.message = "No jobs to process"
            result.duration_ms = int((time.time() - start_time) * 1000)
            return result

        logger.info(f"Processing {len(jobs)} creative jobs")

        for job in jobs:
            job_start = time.time()
            try:
                self.repo.mark_running(job.id, datetime.now(timezone.utc))
                logger.info(f"Processing creative job {job.id}, type: {job.type}")

                urls, cost = await self.run_job(job)

                self.repo.mark_succeeded(
                    job.id, urls, cost,
                    processing_time_ms=int((time.time() - job_start) * 1000),
                    completed_at=datetime.now(timezone.utc)
                )
                stats.succeeded += 1
                logger.info(f"Creative job {job.id} succeeded with {len(urls)} outputs")

                try:
                    self.repo.increment_usage(job.tenant_id, cost)
                except Exception as e:
                    logger.warning(f"Could not record creative usage for tenant {job.tenant_id}: {e}")

            except Exception as e:
                message = getattr(e, 'message', None) or str(e) or "Unknown error"
                logger.error(f"Creative job {job.id} failed: {message}")
                self.repo.mark_failed(
                    job.id, message,
                    processing_time_ms=int((time.time() - job_start) * 1000),
                    completed_at=datetime.now(timezone.utc)
                )
                stats.failed += 1
                stats.errors.append(f"{job.id}: {message}")

            stats.processed += 1

        result.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Creative processing completed in {result.duration_ms}ms: {stats.succeeded} ok, {stats.failed} failed")
        return result
