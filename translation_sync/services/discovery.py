import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from translation_sync.api.v1.metrics import DISCOVERY_ENQUEUED_TOTAL
from translation_sync.commands.upsert_discovered import upsert_discovered
from translation_sync.domain.models import (
    DiscoveredJob,
    SourceRow,
    TranslationMeta,
    build_payload,
    build_source_hash,
)
from translation_sync.domain.retry import DEFAULT_MAX_ATTEMPTS
from translation_sync.domain.states import JobType
from translation_sync.services.targets import TARGETS, TranslationTarget

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class DiscoveryLimits:
    page_size: int = 200
    enqueue_target: int = 200
    upsert_chunk_size: int = 200
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    @property
    def per_type_quota(self) -> int:
        # Even split so one content type can't starve the other
        return max(1, self.enqueue_target // len(JobType))

def plan_page(
    target: TranslationTarget,
    sources: Sequence[SourceRow],
    meta: dict[tuple[str, str], TranslationMeta],
    locales: Sequence[str],
) -> list[DiscoveredJob]:
    """
    Builds job rows for every (source, locale) pair whose translation is
    missing or stale, skipping manual overrides.

    The whole page is planned; the quota is applied by upsert_discovered
    after rows owned by live or unchanged failed jobs are filtered out.
    """
    planned: list[DiscoveredJob] = []
    for source in sources:
        if not source.text:
            continue

        source_hash = build_source_hash(source.text)
        for locale in locales:
            existing = meta.get((str(source.id), locale))
            if existing is not None and existing.is_manual:
                continue
            if existing is not None and existing.source_hash == source_hash:
                continue

            planned.append(DiscoveredJob(
                job_type=target.job_type,
                payload=build_payload(target.job_type, source.id, locale, source.text, source_hash),
            ))
    return planned

class DiscoveryScanner:
    """
    Pages through source entities and enqueues translation jobs for missing
    or outdated non-manual translations.

    Each page is read and upserted in its own short transaction, so a run
    that stops half way has still persisted everything it found.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locales: Sequence[str],
        limits: Optional[DiscoveryLimits] = None,
        targets: Optional[dict[JobType, TranslationTarget]] = None,
    ):
        self.session_factory = session_factory
        self.locales = tuple(locales)
        self.limits = limits or DiscoveryLimits()
        self.targets = targets or TARGETS

    async def run(self, should_stop: Callable[[], bool] = lambda: False) -> dict[JobType, int]:
        """Runs discovery for every job type. Returns enqueued counts per type."""
        enqueued: dict[JobType, int] = {}
        for job_type in JobType:
            enqueued[job_type] = await self.scan(
                self.targets[job_type],
                max_jobs=self.limits.per_type_quota,
                should_stop=should_stop,
            )
        logger.info(
            "Translation discovery enqueued %s",
            ", ".join(f"{job_type}={count}" for job_type, count in enqueued.items()),
        )
        return enqueued

    async def scan(
        self,
        target: TranslationTarget,
        max_jobs: int,
        should_stop: Callable[[], bool] = lambda: False,
    ) -> int:
        if max_jobs <= 0 or not self.locales:
            return 0

        cursor = None
        enqueued = 0

        while enqueued < max_jobs and not should_stop():
            async with self.session_factory() as session:
                sources = await target.list_page(session, cursor, self.limits.page_size)
                if not sources:
                    break

                candidates = [source for source in sources if source.text]
                if candidates:
                    meta = await target.load_meta(
                        session,
                        [target.coerce_id(source.id) for source in candidates],
                        self.locales,
                    )
                    rows = plan_page(target, candidates, meta, self.locales)
                    if rows:
                        written = await upsert_discovered(
                            session,
                            rows,
                            chunk_size=self.limits.upsert_chunk_size,
                            max_attempts=self.limits.max_attempts,
                            limit=max_jobs - enqueued,
                        )
                        await session.commit()
                        enqueued += written
                        DISCOVERY_ENQUEUED_TOTAL.labels(job_type=target.job_type).inc(written)

            if len(sources) < self.limits.page_size:
                break
            cursor = sources[-1].id

        return enqueued
