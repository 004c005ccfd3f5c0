from datetime import datetime, timezone
from typing import Optional
import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from translation_sync.db.models import TranslationJob
from translation_sync.domain.errors import JobNotFoundError
from translation_sync.domain.retry import calculate_next_run, normalize_max_attempts, truncate_error
from translation_sync.domain.states import JobStatus, RetryDecision

logger = logging.getLogger(__name__)

def error_message(error: BaseException | str) -> str:
    if isinstance(error, BaseException):
        return str(error) or error.__class__.__name__
    return str(error)

async def schedule_retry_or_fail(
    session: AsyncSession,
    job: TranslationJob,
    error: BaseException | str,
    now: Optional[datetime] = None,
) -> RetryDecision:
    """
    Records a failed attempt.

    Once attempts reach max_attempts the job becomes FAILED with
    available_at=now (terminal, visible immediately). Otherwise it goes back
    to PENDING with an exponential backoff.
    """
    now = now or datetime.now(timezone.utc)

    attempts = (job.attempts or 0) + 1
    max_attempts = normalize_max_attempts(job.max_attempts)
    exhausted = attempts >= max_attempts
    message = truncate_error(error_message(error))

    if exhausted:
        status = JobStatus.FAILED
        retry_at = now
        decision = RetryDecision.FAILED
    else:
        status = JobStatus.PENDING
        retry_at = calculate_next_run(attempts, now)
        decision = RetryDecision.RETRY_SCHEDULED

    stmt = update(TranslationJob).where(
        TranslationJob.id == job.id,
        TranslationJob.job_type == job.job_type,
    ).values(
        status=status,
        attempts=attempts,
        available_at=retry_at,
        reserved_at=None,
        last_error=message,
        updated_at=now,
    ).returning(TranslationJob.id).execution_options(synchronize_session=False)

    result = await session.execute(stmt)
    if result.scalar_one_or_none() is None:
        raise JobNotFoundError(job.id)

    logger.info(
        "Translation job %s (%s %s) attempt %d/%d failed, %s: %s",
        job.id,
        job.job_type,
        job.dedupe_key,
        attempts,
        max_attempts,
        "giving up" if exhausted else f"retrying at {retry_at.isoformat()}",
        message,
    )

    await session.flush()
    return decision
