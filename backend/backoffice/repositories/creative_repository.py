"""
Creative Repository - Data Access Layer for creative_jobs

Author: Backoffice API team
Date: 2026-02-14
"""
from datetime import datetime
from typing import List, Optional

from backoffice.core.database import get_db_connection_dict
from backoffice.domain.creative import CreativeJob, CreativeJobCreate
from backoffice.repositories.event_repository import to_json

JOB_COLUMNS = """
    id, tenant_id, type, status, prompt, product_name, product_image_url,
    reference_images, reference_video_url, reference_audio_url, settings,
    pipeline_steps, output_urls, cost_cents, error_message, processing_time_ms,
    created_at, started_at, completed_at
"""


class CreativeRepository:
    """Repository for creative jobs"""

    def insert(self, tenant_id: str, user_id: str, data: CreativeJobCreate) -> CreativeJob:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                INSERT INTO creative_jobs (
                    tenant_id, created_by, type, status, prompt, product_name,
                    product_image_url, reference_images, reference_video_url,
                    reference_audio_url, settings, pipeline_steps
                ) VALUES (%s, %s, %s, 'queued', %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {JOB_COLUMNS}
            """, (
                tenant_id, user_id, data.type, data.prompt, data.product_name,
                data.product_image_url, data.reference_images, data.reference_video_url,
                data.reference_audio_url, to_json(data.settings),
                to_json([step.model_dump() for step in data.pipeline_steps])
            ))
            row = cursor.fetchone()
            conn.commit()
            return CreativeJob(**row)

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def find_by_id(self, tenant_id: str, job_id: str) -> Optional[CreativeJob]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {JOB_COLUMNS} FROM creative_jobs
                WHERE id = %s AND tenant_id = %s
            """, (job_id, tenant_id))
            row = cursor.fetchone()
            return CreativeJob(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_queued(self, job_id: Optional[str] = None, limit: int = 5) -> List[CreativeJob]:
        """One specific queued job, or the oldest queued jobs (FIFO)"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            if job_id:
                cursor.execute(f"""
                    SELECT {JOB_COLUMNS} FROM creative_jobs
                    WHERE id = %s AND status = 'queued'
                """, (job_id,))
            else:
                cursor.execute(f"""
                    SELECT {JOB_COLUMNS} FROM creative_jobs
                    WHERE status = 'queued'
                    ORDER BY created_at ASC
                    LIMIT %s
                """, (limit,))
            return [CreativeJob(**row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def mark_running(self, job_id: str, started_at: datetime) -> None:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE creative_jobs SET status = 'running', started_at = %s
                WHERE id = %s
            """, (started_at, job_id))
            conn.commit()

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def mark_succeeded(self, job_id: str, output_urls: List[str], cost_cents: int,
                       processing_time_ms: int, completed_at: datetime) -> None:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE creative_jobs
                SET status = 'succeeded', output_urls = %s, cost_cents = %s,
                    processing_time_ms = %s, completed_at = %s, error_message = NULL
                WHERE id = %s
            """, (output_urls, cost_cents, processing_time_ms, completed_at, job_id))
            conn.commit()

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def increment_usage(self, tenant_id: str, cost_cents: int) -> None:
        """Add one generation and its cost to the tenant's AI usage counters"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT increment_creative_usage(%s, %s)", (tenant_id, cost_cents))
            conn.commit()

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def mark_failed(self, job_id: str, error_message: str, processing_time_ms: int,
                    completed_at: datetime) -> None:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE creative_jobs
                SET status = 'failed', error_message = %s,
                    processing_time_ms = %s, completed_at = %s
                WHERE id = %s
            """, (error_message, processing_time_ms, completed_at, job_id))
            conn.commit()

        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()
