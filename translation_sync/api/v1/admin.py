from fastapi import APIRouter, Query

from translation_sync.api.deps import CronAuth, DbSession
from translation_sync.commands.requeue_stale import requeue_stale_jobs
from translation_sync.settings import settings

router = APIRouter(dependencies=[CronAuth])

# Used when the operator asks for a requeue but no timeout is configured
FALLBACK_STALE_SECONDS = 900

@router.post("/requeue_stale")
async def trigger_requeue_stale(
    session: DbSession,
    older_than_seconds: int | None = Query(None, ge=1),
):
    timeout = older_than_seconds or settings.STALE_PROCESSING_TIMEOUT_SECONDS or FALLBACK_STALE_SECONDS
    count = await requeue_stale_jobs(session, older_than_seconds=timeout)
    await session.commit()
    return {"requeued_count": count, "older_than_seconds": timeout}
