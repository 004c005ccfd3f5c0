from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from translation_sync.db.models import TranslationJob
from translation_sync.domain.retry import normalize_max_attempts
from translation_sync.domain.states import JobStatus

STALE_ERROR = "Reservation expired while processing (crashed or timed out invocation?)"

async def requeue_stale_jobs(
    session: AsyncSession,
    older_than_seconds: int,
    now: Optional[datetime] = None,
    limit: int = 100,
) -> int:
    """
    Finds jobs stuck in PROCESSING whose reservation is older than the
    timeout and hands them back to PENDING (or FAILED once exhausted).
    Returns number of jobs recovered.

    Off by default: an invocation that dies between claim and resolution is
    the only way to end up here.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(seconds=older_than_seconds)

    stmt = select(TranslationJob).where(
        TranslationJob.status == JobStatus.PROCESSING,
        TranslationJob.reserved_at.is_not(None),
        TranslationJob.reserved_at < cutoff,
    ).order_by(TranslationJob.reserved_at.asc()).limit(limit)

    dialect_name = session.get_bind().dialect.name
    if dialect_name == "postgresql":
        stmt = stmt.with_for_update(skip_locked=True)

    stale_jobs = (await session.execute(stmt)).scalars().all()

    count = 0
    for job in stale_jobs:
        count += 1
        job.attempts = (job.attempts or 0) + 1
        job.last_error = STALE_ERROR
        job.reserved_at = None
        job.updated_at = now
        job.available_at = now
        if job.attempts >= normalize_max_attempts(job.max_attempts):
            job.status = JobStatus.FAILED
        else:
            job.status = JobStatus.PENDING

    if count > 0:
        from translation_sync.api.v1.metrics import STALE_REQUEUED_TOTAL
        STALE_REQUEUED_TOTAL.inc(count)

    await session.flush()
    return count
