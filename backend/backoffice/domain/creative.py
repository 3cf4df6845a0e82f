"""
Creative Domain Models

AI generated marketing creatives (creative_jobs). A job is queued by the
merchant and picked up by the creative-process job.

Author: Backoffice API team
Date: 2026-02-14
"""
from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime

JOB_TYPES = ("product_video", "ugc_ai_video", "avatar_mascot", "pipeline")
JOB_STATUSES = ("queued", "running", "succeeded", "failed")


class PipelineStep(BaseModel):
    step_id: str
    model_id: str


class CreativeJob(BaseModel):
    """
    Creative job domain model

    Fields:
        settings: Free-form generation options (duration, aspect_ratio,
            start_frame, style_preset...)
        pipeline_steps: Ordered model calls for 'pipeline' jobs
        output_urls: Generated media, filled when the job succeeds
        cost_cents: Sum of the model costs of the run
    """

    id: str
    tenant_id: str
    type: str
    status: str = "queued"
    prompt: Optional[str] = None
    product_name: Optional[str] = None
    product_image_url: Optional[str] = None
    reference_images: List[str] = Field(default_factory=list)
    reference_video_url: Optional[str] = None
    reference_audio_url: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)
    pipeline_steps: List[PipelineStep] = Field(default_factory=list)
    output_urls: List[str] = Field(default_factory=list)
    cost_cents: int = 0
    error_message: Optional[str] = None
    processing_time_ms: Optional[int] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator('reference_images', 'output_urls', 'pipeline_steps', mode='before')
    @classmethod
    def null_as_empty_list(cls, value):
        return value or []

    @field_validator('settings', mode='before')
    @classmethod
    def null_as_empty_dict(cls, value):
        return value or {}

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


class CreativeJobCreate(BaseModel):
    type: str
    prompt: Optional[str] = None
    product_name: Optional[str] = None
    product_image_url: Optional[str] = None
    reference_images: List[str] = Field(default_factory=list)
    reference_video_url: Optional[str] = None
    reference_audio_url: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)
    pipeline_steps: List[PipelineStep] = Field(default_factory=list)


class ProcessRequest(BaseModel):
    job_id: Optional[str] = None
    limit: int = Field(5, ge=1, le=50)
