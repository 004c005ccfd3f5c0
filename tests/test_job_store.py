import asyncio
from datetime import timedelta

import pytest

from helpers import add_job, all_jobs, as_utc, get_job, utcnow
from translation_sync.commands.claim_job import claim_job, fetch_due_jobs
from translation_sync.commands.complete_job import complete_job
from translation_sync.commands.fail_job import schedule_retry_or_fail
from translation_sync.commands.requeue_stale import requeue_stale_jobs
import translation_sync.commands.upsert_discovered as upsert_module
from translation_sync.commands.upsert_discovered import upsert_discovered
from translation_sync.domain.errors import JobNotFoundError, MissingBatchEntryError
from translation_sync.domain.models import DiscoveredJob, build_payload, build_source_hash
from translation_sync.domain.states import JobStatus, JobType, RetryDecision


def _discovered(event_id: str, locale: str, title: str) -> DiscoveredJob:
    return DiscoveredJob(
        job_type=JobType.EVENT_TITLE,
        payload=build_payload(JobType.EVENT_TITLE, event_id, locale, title, build_source_hash(title)),
    )


async def _upsert(session_factory, rows, **kwargs) -> int:
    async with session_factory() as session:
        written = await upsert_discovered(session, rows, **kwargs)
        await session.commit()
        return written


def test_upsert_creates_pending_jobs(session_factory):
    written = asyncio.run(_upsert(session_factory, [_discovered("evt-1", "de", "Hello"), _discovered("evt-1", "fr", "Hello")]))
    assert written == 2

    jobs = asyncio.run(all_jobs(session_factory))
    assert [job.dedupe_key for job in jobs] == ["evt-1:de", "evt-1:fr"]
    assert all(job.status == JobStatus.PENDING for job in jobs)
    assert all(job.attempts == 0 for job in jobs)
    assert jobs[0].payload["source_title"] == "Hello"


def test_upsert_leaves_live_jobs_alone(session_factory):
    for status in (JobStatus.PENDING, JobStatus.PROCESSING):
        key = f"evt-{status}:de"
        asyncio.run(add_job(session_factory, JobType.EVENT_TITLE, key, {"event_id": f"evt-{status}", "locale": "de"}, status=status, attempts=2))

    written = asyncio.run(_upsert(session_factory, [
        _discovered("evt-pending", "de", "New"),
        _discovered("evt-processing", "de", "New"),
    ]))
    assert written == 0

    jobs = {job.dedupe_key: job for job in asyncio.run(all_jobs(session_factory))}
    assert jobs["evt-pending:de"].attempts == 2
    assert jobs["evt-processing:de"].status == JobStatus.PROCESSING
    assert "source_title" not in jobs["evt-processing:de"].payload


def test_upsert_resets_completed_jobs(session_factory):
    asyncio.run(add_job(
        session_factory, JobType.EVENT_TITLE, "evt-1:de",
        {"event_id": "evt-1", "locale": "de", "source_title": "Old", "source_hash": build_source_hash("Old")},
        status=JobStatus.COMPLETED, attempts=1,
    ))

    assert asyncio.run(_upsert(session_factory, [_discovered("evt-1", "de", "New")])) == 1

    job = asyncio.run(all_jobs(session_factory))[0]
    assert job.status == JobStatus.PENDING
    assert job.attempts == 0
    assert job.payload["source_title"] == "New"


def test_upsert_failed_job_only_when_source_changed(session_factory):
    asyncio.run(add_job(
        session_factory, JobType.EVENT_TITLE, "evt-1:de",
        {"event_id": "evt-1", "locale": "de", "source_title": "Same", "source_hash": build_source_hash("Same")},
        status=JobStatus.FAILED, attempts=5,
    ))

    assert asyncio.run(_upsert(session_factory, [_discovered("evt-1", "de", "Same")])) == 0
    assert asyncio.run(all_jobs(session_factory))[0].status == JobStatus.FAILED

    assert asyncio.run(_upsert(session_factory, [_discovered("evt-1", "de", "Changed")])) == 1
    job = asyncio.run(all_jobs(session_factory))[0]
    assert job.status == JobStatus.PENDING
    assert job.attempts == 0
    assert job.last_error is None


def test_upsert_failed_job_without_stored_hash_is_replaced(session_factory):
    asyncio.run(add_job(
        session_factory, JobType.EVENT_TITLE, "evt-1:de", {"event_id": "evt-1", "locale": "de"},
        status=JobStatus.FAILED, attempts=5,
    ))
    assert asyncio.run(_upsert(session_factory, [_discovered("evt-1", "de", "Same")])) == 1


def test_upsert_counts_only_rows_the_conflict_guard_wrote(session_factory, monkeypatch):
    asyncio.run(add_job(
        session_factory, JobType.EVENT_TITLE, "evt-1:de", {"event_id": "evt-1", "locale": "de"},
        status=JobStatus.PROCESSING, attempts=1,
    ))
    # Another invocation claims the row between our read and our write
    monkeypatch.setattr(upsert_module, "should_upsert", lambda existing, row: True)

    written = asyncio.run(_upsert(session_factory, [
        _discovered("evt-1", "de", "Hello"),
        _discovered("evt-2", "de", "Hello"),
    ]))

    assert written == 1
    jobs = {job.dedupe_key: job for job in asyncio.run(all_jobs(session_factory))}
    assert jobs["evt-1:de"].status == JobStatus.PROCESSING
    assert jobs["evt-1:de"].attempts == 1
    assert jobs["evt-2:de"].status == JobStatus.PENDING


def test_upsert_limit_ignores_skipped_rows(session_factory):
    asyncio.run(add_job(
        session_factory, JobType.EVENT_TITLE, "evt-1:de",
        {"event_id": "evt-1", "locale": "de", "source_title": "A", "source_hash": build_source_hash("A")},
        status=JobStatus.FAILED, attempts=5,
    ))
    asyncio.run(add_job(
        session_factory, JobType.EVENT_TITLE, "evt-2:de", {"event_id": "evt-2", "locale": "de"},
        status=JobStatus.PROCESSING,
    ))
    rows = [_discovered(f"evt-{index}", "de", "A") for index in range(1, 6)]

    written = asyncio.run(_upsert(session_factory, rows, limit=2, chunk_size=2))

    assert written == 2
    pending = [job.dedupe_key for job in asyncio.run(all_jobs(session_factory)) if job.status == JobStatus.PENDING]
    assert pending == ["evt-3:de", "evt-4:de"]


def test_upsert_last_duplicate_wins_and_chunks(session_factory):
    rows = [_discovered(f"evt-{index}", "de", "A") for index in range(5)]
    rows.append(_discovered("evt-4", "de", "B"))

    written = asyncio.run(_upsert(session_factory, rows, chunk_size=2))

    jobs = {job.dedupe_key: job for job in asyncio.run(all_jobs(session_factory))}
    assert len(jobs) == 5
    assert jobs["evt-4:de"].payload["source_title"] == "B"
    # Both evt-4 rows land in the last chunk; only the later one is written
    assert written == 5


def test_fetch_due_orders_by_available_at_and_skips_future(session_factory):
    now = utcnow()
    asyncio.run(add_job(session_factory, JobType.EVENT_TITLE, "late:de", {}, available_at=now - timedelta(seconds=10)))
    asyncio.run(add_job(session_factory, JobType.EVENT_TITLE, "early:de", {}, available_at=now - timedelta(minutes=5)))
    asyncio.run(add_job(session_factory, JobType.EVENT_TITLE, "future:de", {}, available_at=now + timedelta(minutes=5)))
    asyncio.run(add_job(session_factory, JobType.EVENT_TITLE, "done:de", {}, status=JobStatus.COMPLETED, available_at=now - timedelta(hours=1)))
    asyncio.run(add_job(session_factory, JobType.EVENT_TITLE, "dead:de", {}, status=JobStatus.FAILED, available_at=now - timedelta(hours=1)))

    async def _fetch(limit):
        async with session_factory() as session:
            return await fetch_due_jobs(session, now, limit)

    assert [job.dedupe_key for job in asyncio.run(_fetch(20))] == ["early:de", "late:de"]
    assert [job.dedupe_key for job in asyncio.run(_fetch(1))] == ["early:de"]


def test_second_claim_on_same_snapshot_loses(session_factory):
    job = asyncio.run(add_job(session_factory, JobType.EVENT_TITLE, "evt-1:de", {"event_id": "evt-1", "locale": "de"}))
    now = utcnow()

    async def _claim():
        # Both callers work from the same stale read of the row
        async with session_factory() as session:
            claimed = await claim_job(session, job, now)
            await session.commit()
            return claimed

    first = asyncio.run(_claim())
    assert first is not None
    assert first.status == JobStatus.PROCESSING
    assert as_utc(first.reserved_at) == now

    assert asyncio.run(_claim()) is None
    assert asyncio.run(get_job(session_factory, job.id)).status == JobStatus.PROCESSING


def test_concurrent_claims_have_one_winner(session_factory):
    job = asyncio.run(add_job(session_factory, JobType.EVENT_TITLE, "evt-1:de", {"event_id": "evt-1", "locale": "de"}))
    now = utcnow()

    async def _claim():
        async with session_factory() as session:
            claimed = await claim_job(session, job, now)
            await session.commit()
            return claimed

    async def _race():
        return await asyncio.gather(_claim(), _claim())

    results = asyncio.run(_race())

    winners = [claimed for claimed in results if claimed is not None]
    assert len(winners) == 1
    assert winners[0].status == JobStatus.PROCESSING
    stored = asyncio.run(get_job(session_factory, job.id))
    assert stored.status == JobStatus.PROCESSING
    assert stored.attempts == 0


def test_claim_rejects_job_not_yet_due(session_factory):
    job = asyncio.run(add_job(
        session_factory, JobType.EVENT_TITLE, "evt-1:de", {},
        available_at=utcnow() + timedelta(minutes=1),
    ))

    async def _claim():
        async with session_factory() as session:
            return await claim_job(session, job, utcnow())

    assert asyncio.run(_claim()) is None


def test_complete_job_stores_refreshed_payload(session_factory):
    job = asyncio.run(add_job(session_factory, JobType.EVENT_TITLE, "evt-1:de", {"event_id": "evt-1", "locale": "de"}, status=JobStatus.PROCESSING))
    payload = build_payload(JobType.EVENT_TITLE, "evt-1", "de", "Hello", build_source_hash("Hello"))

    async def _complete():
        async with session_factory() as session:
            await complete_job(session, job, payload)
            await session.commit()

    asyncio.run(_complete())

    stored = asyncio.run(get_job(session_factory, job.id))
    assert stored.status == JobStatus.COMPLETED
    assert stored.attempts == 1
    assert stored.reserved_at is None
    assert stored.last_error is None
    assert stored.payload["source_hash"] == build_source_hash("Hello")


def test_complete_missing_job_raises(session_factory):
    job = asyncio.run(add_job(session_factory, JobType.EVENT_TITLE, "evt-1:de", {}))
    payload = build_payload(JobType.EVENT_TITLE, "evt-1", "de", "Hello", build_source_hash("Hello"))
    job.job_type = JobType.TAG_NAME.value

    async def _complete():
        async with session_factory() as session:
            await complete_job(session, job, payload)

    with pytest.raises(JobNotFoundError):
        asyncio.run(_complete())


def test_retry_schedules_backoff_then_fails(session_factory):
    job = asyncio.run(add_job(session_factory, JobType.EVENT_TITLE, "evt-1:de", {}, status=JobStatus.PROCESSING, max_attempts=2))
    now = utcnow()

    async def _fail(current):
        async with session_factory() as session:
            decision = await schedule_retry_or_fail(session, current, MissingBatchEntryError("omitted"), now=now)
            await session.commit()
            return decision

    assert asyncio.run(_fail(job)) == RetryDecision.RETRY_SCHEDULED
    stored = asyncio.run(get_job(session_factory, job.id))
    assert stored.status == JobStatus.PENDING
    assert stored.attempts == 1
    assert stored.last_error == "omitted"
    assert as_utc(stored.available_at) == now + timedelta(seconds=2)

    assert asyncio.run(_fail(stored)) == RetryDecision.FAILED
    stored = asyncio.run(get_job(session_factory, job.id))
    assert stored.status == JobStatus.FAILED
    assert stored.attempts == 2
    assert as_utc(stored.available_at) == now


def test_failed_jobs_are_never_due(session_factory):
    job = asyncio.run(add_job(session_factory, JobType.TAG_NAME, "7:de", {}, status=JobStatus.PROCESSING, attempts=4))

    async def _fail_and_fetch():
        async with session_factory() as session:
            await schedule_retry_or_fail(session, job, "boom")
            await session.commit()
        async with session_factory() as session:
            return await fetch_due_jobs(session, utcnow() + timedelta(days=1), 20)

    assert asyncio.run(_fail_and_fetch()) == []


def test_invalid_max_attempts_uses_default(session_factory):
    job = asyncio.run(add_job(session_factory, JobType.TAG_NAME, "7:de", {}, status=JobStatus.PROCESSING, attempts=3, max_attempts=0))

    async def _fail():
        async with session_factory() as session:
            decision = await schedule_retry_or_fail(session, job, "boom")
            await session.commit()
            return decision

    assert asyncio.run(_fail()) == RetryDecision.RETRY_SCHEDULED


def test_requeue_stale_processing_jobs(session_factory):
    now = utcnow()
    stale = asyncio.run(add_job(session_factory, JobType.EVENT_TITLE, "stale:de", {}, status=JobStatus.PROCESSING))
    fresh = asyncio.run(add_job(session_factory, JobType.EVENT_TITLE, "fresh:de", {}, status=JobStatus.PROCESSING))

    async def _reserve(job, reserved_at):
        async with session_factory() as session:
            stored = await session.get(type(job), job.id)
            stored.reserved_at = reserved_at
            await session.commit()

    asyncio.run(_reserve(stale, now - timedelta(hours=1)))
    asyncio.run(_reserve(fresh, now - timedelta(seconds=30)))

    async def _requeue():
        async with session_factory() as session:
            count = await requeue_stale_jobs(session, older_than_seconds=600, now=now)
            await session.commit()
            return count

    assert asyncio.run(_requeue()) == 1
    assert asyncio.run(get_job(session_factory, stale.id)).status == JobStatus.PENDING
    assert asyncio.run(get_job(session_factory, stale.id)).attempts == 1
    assert asyncio.run(get_job(session_factory, fresh.id)).status == JobStatus.PROCESSING
