import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from translation_sync.api.v1.metrics import JOB_OUTCOME_TOTAL, SYNC_RUNS_TOTAL
from translation_sync.commands.claim_job import claim_job, fetch_due_jobs
from translation_sync.commands.complete_job import complete_job
from translation_sync.commands.fail_job import error_message, schedule_retry_or_fail
from translation_sync.commands.requeue_stale import requeue_stale_jobs
from translation_sync.db.models import TranslationJob
from translation_sync.domain.errors import (
    ConfigurationSkip,
    JobError,
    PersistenceError,
    ResponseParseError,
    TranslationProviderError,
)
from translation_sync.domain.locales import parse_enabled_locales, translatable_locales
from translation_sync.domain.models import (
    JobPayload,
    SyncResult,
    SyncStats,
    build_payload,
    build_source_hash,
    job_identity,
    parse_payload,
)
from translation_sync.domain.states import RetryDecision
from translation_sync.services.discovery import DiscoveryLimits, DiscoveryScanner
from translation_sync.services.targets import TranslationTarget, get_target
from translation_sync.services.translator import Translator, build_item, pick_translation, translate_batch

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class ProviderSettings:
    configured: bool
    api_key: Optional[str] = None
    model: Optional[str] = None

    @classmethod
    def from_values(cls, api_key: Optional[str], model: Optional[str] = None) -> "ProviderSettings":
        key = (api_key or "").strip() or None
        return cls(configured=key is not None, api_key=key, model=(model or "").strip() or None)

@dataclass(frozen=True)
class SyncConfig:
    """Read-only configuration for one sync invocation."""
    provider: ProviderSettings
    automatic_translations_enabled: bool
    enabled_locales: tuple[str, ...]
    time_limit_seconds: float = 250.0
    job_batch_size: int = 20
    discovery: DiscoveryLimits = field(default_factory=DiscoveryLimits)
    max_errors: int = 50
    stale_processing_timeout_seconds: Optional[int] = None

    @classmethod
    def from_settings(cls, settings) -> "SyncConfig":
        return cls(
            provider=ProviderSettings.from_values(settings.OPENROUTER_API_KEY, settings.OPENROUTER_MODEL),
            automatic_translations_enabled=settings.AUTOMATIC_TRANSLATIONS_ENABLED,
            enabled_locales=translatable_locales(parse_enabled_locales(settings.ENABLED_LOCALES)),
            time_limit_seconds=settings.SYNC_TIME_LIMIT_SECONDS,
            job_batch_size=settings.JOB_BATCH_SIZE,
            discovery=DiscoveryLimits(
                page_size=settings.DISCOVERY_SCAN_PAGE_SIZE,
                enqueue_target=settings.DISCOVERY_ENQUEUE_TARGET,
                upsert_chunk_size=settings.JOB_UPSERT_BATCH_SIZE,
                max_attempts=settings.DEFAULT_MAX_ATTEMPTS,
            ),
            max_errors=settings.MAX_REPORTED_ERRORS,
            stale_processing_timeout_seconds=settings.STALE_PROCESSING_TIMEOUT_SECONDS,
        )

    def validate(self) -> None:
        """Raises ConfigurationSkip when a run should be a deliberate no-op."""
        if not self.provider.configured:
            raise ConfigurationSkip("Translation provider is not configured.")
        if not self.automatic_translations_enabled:
            raise ConfigurationSkip("Automatic translations are disabled.")
        if not self.enabled_locales:
            raise ConfigurationSkip("No target locales are enabled.")

@dataclass
class PreparedJob:
    """A claimed job that still needs a translation."""
    job: TranslationJob
    target: TranslationTarget
    payload: JobPayload  # refreshed from the current source

    @property
    def source_text(self) -> str:
        return self.payload.source_text or ""

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class TranslationSyncService:
    """
    Time-boxed reconciliation loop.

    Each cycle either works through a batch of due jobs (claim, resolve the
    current source, one provider call, persist) or, when nothing is due,
    runs discovery. The run ends when discovery finds nothing new or the
    time budget is spent. Every step commits on its own, so the next
    invocation can pick up wherever this one stopped.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        translator: Translator,
        config: SyncConfig,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.translator = translator
        self.config = config
        self._clock = clock
        self._now = now
        self._started_at = 0.0

    def _time_exceeded(self) -> bool:
        return self._clock() - self._started_at >= self.config.time_limit_seconds

    async def run(self) -> SyncResult:
        stats = SyncStats(max_errors=self.config.max_errors)

        try:
            self.config.validate()
        except ConfigurationSkip as skip:
            logger.info("Translation sync skipped: %s", skip.reason)
            SYNC_RUNS_TOTAL.labels(result="skipped").inc()
            return SyncResult(success=True, skipped=True, reason=skip.reason, stats=stats)

        self._started_at = self._clock()
        logger.info(
            "Translation sync started (locales=%s, budget=%ss)",
            ",".join(self.config.enabled_locales),
            self.config.time_limit_seconds,
        )

        try:
            await self._requeue_stale()
            await self._loop(stats)
        except Exception as e:
            logger.exception("Translation sync failed")
            SYNC_RUNS_TOTAL.labels(result="error").inc()
            return SyncResult(success=False, stats=stats, error=str(e) or "Unknown error")

        if self._time_exceeded():
            stats.time_limit_reached = True

        logger.info(
            "Translation sync finished: scanned=%d completed=%d retried=%d failed=%d "
            "skipped_manual=%d skipped_up_to_date=%d time_limit_reached=%s",
            stats.scanned,
            stats.completed,
            stats.retried,
            stats.failed,
            stats.skipped_manual,
            stats.skipped_up_to_date,
            stats.time_limit_reached,
        )
        SYNC_RUNS_TOTAL.labels(result="ok").inc()
        return SyncResult(success=True, stats=stats)

    async def _requeue_stale(self) -> None:
        timeout = self.config.stale_processing_timeout_seconds
        if not timeout:
            return
        async with self.session_factory() as session:
            count = await requeue_stale_jobs(session, older_than_seconds=timeout, now=self._now())
            await session.commit()
        if count:
            logger.warning("Requeued %d translation jobs stuck in processing", count)

    async def _loop(self, stats: SyncStats) -> None:
        discovery = DiscoveryScanner(
            self.session_factory,
            locales=self.config.enabled_locales,
            limits=self.config.discovery,
        )

        while not self._time_exceeded():
            now = self._now()
            async with self.session_factory() as session:
                candidates = await fetch_due_jobs(session, now, self.config.job_batch_size)

            if not candidates:
                enqueued = await discovery.run(should_stop=self._time_exceeded)
                for job_type, count in enqueued.items():
                    stats.enqueued[job_type] += count
                if sum(enqueued.values()) == 0:
                    break
                continue

            await self._process_cycle(candidates, now, stats)
            if stats.time_limit_reached:
                break

    async def _process_cycle(self, candidates: list[TranslationJob], now: datetime, stats: SyncStats) -> None:
        prepared: list[PreparedJob] = []

        for candidate in candidates:
            if self._time_exceeded():
                stats.time_limit_reached = True
                break

            stats.scanned += 1
            claimed: Optional[TranslationJob] = None
            try:
                async with self.session_factory() as session:
                    claimed = await claim_job(session, candidate, now)
                    await session.commit()
                if claimed is None:
                    continue

                ready = await self._prepare(claimed, stats)
                if ready is not None:
                    prepared.append(ready)
            except Exception as e:
                await self._handle_job_error(candidate, claimed, e, stats)

        if prepared:
            await self._translate_and_persist(prepared, stats)

    async def _prepare(self, job: TranslationJob, stats: SyncStats) -> Optional[PreparedJob]:
        """
        Re-reads the current source for a claimed job. The cached payload
        may be stale, so it is only used for the target id and locale.

        Returns None when the job was resolved without a translation.
        """
        payload = parse_payload(job.job_type, job.payload, job.dedupe_key)
        target = get_target(job.job_type)

        async with self.session_factory() as session:
            source_text = await target.load_source_text(session, payload.target_id)
            source_hash = build_source_hash(source_text)
            next_payload = build_payload(target.job_type, payload.target_id, payload.locale, source_text, source_hash)

            current = await target.get_meta(session, payload.target_id, payload.locale)
            if current is not None and current.is_manual:
                await complete_job(session, job, next_payload, now=self._now())
                await session.commit()
                stats.skipped_manual += 1
                JOB_OUTCOME_TOTAL.labels(job_type=job.job_type, outcome="skipped_manual").inc()
                return None

            if current is not None and current.source_hash == source_hash:
                await complete_job(session, job, next_payload, now=self._now())
                await session.commit()
                stats.skipped_up_to_date += 1
                JOB_OUTCOME_TOTAL.labels(job_type=job.job_type, outcome="skipped_up_to_date").inc()
                return None

        return PreparedJob(job=job, target=target, payload=next_payload)

    async def _translate_and_persist(self, prepared: list[PreparedJob], stats: SyncStats) -> None:
        items = [
            build_item(entry.job.id, entry.source_text, entry.target.source_label, entry.payload.locale)
            for entry in prepared
        ]

        try:
            results = await translate_batch(
                self.translator,
                items,
                api_key=self.config.provider.api_key or "",
                model=self.config.provider.model,
            )
        except (TranslationProviderError, ResponseParseError) as e:
            logger.warning("Batch translation of %d jobs failed: %s", len(prepared), e)
            for entry in prepared:
                await self._handle_job_error(entry.job, entry.job, e, stats)
            return

        for entry in prepared:
            try:
                text = pick_translation(results, entry.job.id)
                await self._persist(entry, text, stats)
            except Exception as e:
                await self._handle_job_error(entry.job, entry.job, e, stats)

    async def _persist(self, entry: PreparedJob, text: str, stats: SyncStats) -> None:
        payload = entry.payload
        try:
            async with self.session_factory() as session:
                written = await entry.target.upsert_translation(
                    session,
                    payload.target_id,
                    payload.locale,
                    text,
                    payload.source_hash or build_source_hash(entry.source_text),
                )
                await complete_job(session, entry.job, payload, now=self._now())
                await session.commit()
        except JobError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"Failed to save {entry.target.source_label} translation for "
                f"{payload.target_id}/{payload.locale}: {e}"
            ) from e

        if written:
            stats.completed += 1
            JOB_OUTCOME_TOTAL.labels(job_type=entry.job.job_type, outcome="completed").inc()
        else:
            # A manual translation appeared after the check; it wins.
            stats.skipped_manual += 1
            JOB_OUTCOME_TOTAL.labels(job_type=entry.job.job_type, outcome="skipped_manual").inc()

    async def _handle_job_error(
        self,
        job: TranslationJob,
        claimed: Optional[TranslationJob],
        error: BaseException,
        stats: SyncStats,
    ) -> None:
        """Records a per-job error and reschedules the job if we own it."""
        identity = job_identity(job.job_type, job.payload, job.dedupe_key)
        stats.add_error(job.job_type, identity, error_message(error))

        if claimed is None:
            # The claim itself blew up; nothing to reschedule.
            logger.warning("Could not claim translation job %s: %s", job.id, error)
            stats.failed += 1
            return

        try:
            async with self.session_factory() as session:
                decision = await schedule_retry_or_fail(session, claimed, error, now=self._now())
                await session.commit()
        except Exception as reschedule_error:
            logger.exception("Failed to reschedule translation job %s", claimed.id)
            stats.failed += 1
            stats.add_error(job.job_type, identity, error_message(reschedule_error))
            return

        if decision == RetryDecision.RETRY_SCHEDULED:
            stats.retried += 1
            JOB_OUTCOME_TOTAL.labels(job_type=job.job_type, outcome="retried").inc()
        else:
            stats.failed += 1
            JOB_OUTCOME_TOTAL.labels(job_type=job.job_type, outcome="failed").inc()
