from datetime import datetime
from typing import Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from translation_sync.db.models import TranslationJob
from translation_sync.domain.states import JobStatus, JobType
from translation_sync.api.v1.metrics import JOB_CLAIM_TOTAL

logger = logging.getLogger(__name__)

DEFAULT_FETCH_LIMIT = 20

async def fetch_due_jobs(
    session: AsyncSession,
    now: datetime,
    limit: int = DEFAULT_FETCH_LIMIT,
) -> list[TranslationJob]:
    """
    Pending jobs whose available_at has passed, earliest first.

    The limit caps how many jobs (and therefore provider items) one cycle
    can take on.
    """
    stmt = select(TranslationJob).where(
        TranslationJob.job_type.in_([job_type.value for job_type in JobType]),
        TranslationJob.status == JobStatus.PENDING,
        TranslationJob.available_at <= now,
    ).order_by(
        TranslationJob.available_at.asc(),
        TranslationJob.updated_at.asc(),
    ).limit(max(1, limit))

    result = await session.execute(stmt)
    return list(result.scalars().all())

async def claim_job(
    session: AsyncSession,
    job: TranslationJob,
    now: datetime,
) -> Optional[TranslationJob]:
    """
    Atomically moves a pending job to processing.

    UPDATE translation_jobs SET status='processing', reserved_at=now
    WHERE id=:id AND status='pending' AND available_at <= now RETURNING *

    This single statement is the only ownership transfer in the system.
    Returns None when another invocation won the race.
    """
    stmt = update(TranslationJob).where(
        TranslationJob.id == job.id,
        TranslationJob.job_type == job.job_type,
        TranslationJob.status == JobStatus.PENDING,
        TranslationJob.available_at <= now,
    ).values(
        status=JobStatus.PROCESSING,
        reserved_at=now,
        last_error=None,
    ).returning(TranslationJob).execution_options(
        synchronize_session=False,
        populate_existing=True,
    )

    result = await session.execute(stmt)
    claimed = result.scalar_one_or_none()

    if claimed is None:
        logger.debug("Lost claim race for job %s", job.id)
        JOB_CLAIM_TOTAL.labels(job_type=job.job_type, result="lost_race").inc()
        return None

    JOB_CLAIM_TOTAL.labels(job_type=claimed.job_type, result="claimed").inc()
    await session.flush()
    return claimed
