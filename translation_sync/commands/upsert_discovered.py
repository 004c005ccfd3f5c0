import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from translation_sync.db.models import TranslationJob
from translation_sync.domain.models import DiscoveredJob, try_parse_payload
from translation_sync.domain.retry import DEFAULT_MAX_ATTEMPTS
from translation_sync.domain.states import JobStatus, LIVE_STATUSES, REPLACEABLE_STATUSES
from translation_sync.utils.dialect import upsert_insert

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 200

def should_upsert(existing: Optional[TranslationJob], row: DiscoveredJob) -> bool:
    """
    Decides whether a discovered row may replace the stored job.

    - absent: create
    - pending / processing: another cycle owns it, leave it alone
    - completed: overwrite, the source may have drifted since
    - failed: overwrite only if the source hash changed, otherwise we
      would hot-loop on a failure that nothing has fixed
    """
    if existing is None:
        return True

    if existing.status in LIVE_STATUSES:
        return False

    if existing.status == JobStatus.COMPLETED:
        return True

    if existing.status == JobStatus.FAILED:
        stored = try_parse_payload(existing.job_type, existing.payload, existing.dedupe_key)
        stored_hash = stored.source_hash if stored is not None else None
        next_hash = row.payload.source_hash
        if not stored_hash or not next_hash:
            return True
        return stored_hash != next_hash

    return True

async def upsert_discovered(
    session: AsyncSession,
    rows: Sequence[DiscoveredJob],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> int:
    """
    Enqueues discovered jobs, chunk by chunk. Returns the number of rows
    created or refreshed.

    `limit` caps accepted rows. Rows skipped by the rules below never count
    against it, so a page full of live jobs cannot hide the rest of the page.

    The ON CONFLICT branch only fires for completed/failed rows, so a job
    that another invocation claimed between our read and our write keeps
    its processing state.
    """
    if not rows:
        return 0

    now = now or datetime.now(timezone.utc)
    persisted = 0

    for index in range(0, len(rows), chunk_size):
        if limit is not None and persisted >= limit:
            break

        chunk = rows[index:index + chunk_size]
        job_types = sorted({row.job_type.value for row in chunk})
        dedupe_keys = sorted({row.dedupe_key for row in chunk})

        stmt = select(TranslationJob).where(
            TranslationJob.job_type.in_(job_types),
            TranslationJob.dedupe_key.in_(dedupe_keys),
        )
        existing_rows = (await session.execute(stmt)).scalars().all()
        existing_map = {(job.job_type, job.dedupe_key): job for job in existing_rows}

        to_write: dict[tuple[str, str], DiscoveredJob] = {}
        for row in chunk:
            key = (row.job_type.value, row.dedupe_key)
            if should_upsert(existing_map.get(key), row):
                # Last row for a key wins within a chunk
                to_write[key] = row

        accepted = list(to_write.values())
        if limit is not None:
            accepted = accepted[:limit - persisted]
        if not accepted:
            continue

        values = [
            {
                "job_type": row.job_type.value,
                "dedupe_key": row.dedupe_key,
                "payload": row.payload.to_json(),
                "status": JobStatus.PENDING.value,
                "attempts": 0,
                "max_attempts": max_attempts,
                "available_at": now,
                "reserved_at": None,
                "last_error": None,
            }
            for row in accepted
        ]

        insert_stmt = upsert_insert(session, TranslationJob).values(values)
        insert_stmt = insert_stmt.on_conflict_do_update(
            index_elements=["job_type", "dedupe_key"],
            set_={
                "payload": insert_stmt.excluded.payload,
                "status": insert_stmt.excluded.status,
                "attempts": insert_stmt.excluded.attempts,
                "max_attempts": insert_stmt.excluded.max_attempts,
                "available_at": insert_stmt.excluded.available_at,
                "reserved_at": None,
                "last_error": None,
                "updated_at": func.now(),
            },
            where=TranslationJob.status.in_([status.value for status in REPLACEABLE_STATUSES]),
        ).returning(TranslationJob.id)

        # Rows the conflict guard left alone (claimed since our read) return nothing
        result = await session.execute(insert_stmt)
        persisted += len(result.all())

    await session.flush()
    logger.debug("Upserted %d of %d discovered translation jobs", persisted, len(rows))
    return persisted
