from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from translation_sync.db.models import TranslationJob
from translation_sync.domain.errors import JobNotFoundError
from translation_sync.domain.models import JobPayload
from translation_sync.domain.states import JobStatus

async def complete_job(
    session: AsyncSession,
    job: TranslationJob,
    payload: JobPayload,
    now: Optional[datetime] = None,
) -> TranslationJob:
    """
    Marks a claimed job as completed and stores the refreshed payload.

    The payload snapshot carries the source hash we just acted on, which is
    what lets discovery skip this target next time.
    """
    now = now or datetime.now(timezone.utc)

    stmt = update(TranslationJob).where(
        TranslationJob.id == job.id,
        TranslationJob.job_type == job.job_type,
    ).values(
        status=JobStatus.COMPLETED,
        attempts=(job.attempts or 0) + 1,
        available_at=now,
        reserved_at=None,
        last_error=None,
        payload=payload.to_json(),
        updated_at=now,
    ).returning(TranslationJob).execution_options(
        synchronize_session=False,
        populate_existing=True,
    )

    result = await session.execute(stmt)
    updated = result.scalar_one_or_none()
    if updated is None:
        raise JobNotFoundError(job.id)

    await session.flush()
    return updated
