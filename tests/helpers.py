import json
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import select

from translation_sync.db.models import Event, EventTranslation, Tag, TagTranslation, TranslationJob
from translation_sync.domain.models import build_source_hash
from translation_sync.domain.states import JobStatus, JobType
from translation_sync.services.sync import ProviderSettings, SyncConfig

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # sqlite hands datetimes back without tzinfo
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)

def make_config(**overrides) -> SyncConfig:
    values = {
        "provider": ProviderSettings.from_values("test-key", "test/model"),
        "automatic_translations_enabled": True,
        "enabled_locales": ("de",),
        "time_limit_seconds": 60.0,
    }
    values.update(overrides)
    return SyncConfig(**values)

async def seed_events(session_factory, titles: dict[str, str]) -> None:
    async with session_factory() as session:
        for event_id, title in titles.items():
            session.add(Event(id=event_id, title=title))
        await session.commit()

async def seed_tags(session_factory, names: dict[int, str]) -> None:
    async with session_factory() as session:
        for tag_id, name in names.items():
            session.add(Tag(id=tag_id, name=name))
        await session.commit()

async def add_event_translation(
    session_factory,
    event_id: str,
    locale: str,
    title: str,
    source_text: Optional[str] = None,
    is_manual: bool = False,
) -> None:
    async with session_factory() as session:
        session.add(EventTranslation(
            event_id=event_id,
            locale=locale,
            title=title,
            source_hash=build_source_hash(source_text) if source_text is not None else None,
            is_manual=is_manual,
        ))
        await session.commit()

async def add_job(
    session_factory,
    job_type: JobType,
    dedupe_key: str,
    payload: dict,
    status: JobStatus = JobStatus.PENDING,
    attempts: int = 0,
    max_attempts: int = 5,
    available_at: Optional[datetime] = None,
) -> TranslationJob:
    async with session_factory() as session:
        job = TranslationJob(
            job_type=job_type.value,
            dedupe_key=dedupe_key,
            payload=payload,
            status=status.value,
            attempts=attempts,
            max_attempts=max_attempts,
            available_at=available_at or utcnow(),
        )
        session.add(job)
        await session.commit()
        return job

async def all_jobs(session_factory) -> list[TranslationJob]:
    async with session_factory() as session:
        stmt = select(TranslationJob).order_by(TranslationJob.job_type, TranslationJob.dedupe_key)
        return list((await session.execute(stmt)).scalars().all())

async def get_job(session_factory, job_id) -> TranslationJob:
    async with session_factory() as session:
        return await session.get(TranslationJob, job_id)

async def event_translations(session_factory) -> dict[tuple[str, str], EventTranslation]:
    async with session_factory() as session:
        rows = (await session.execute(select(EventTranslation))).scalars().all()
        return {(row.event_id, row.locale): row for row in rows}

async def tag_translations(session_factory) -> dict[tuple[int, str], TagTranslation]:
    async with session_factory() as session:
        rows = (await session.execute(select(TagTranslation))).scalars().all()
        return {(row.tag_id, row.locale): row for row in rows}

class FakeTranslator:
    """Translates to "[locale] source"; can drop ids or fail outright."""

    def __init__(self, skip: Iterable[int] = (), error: Optional[Exception] = None, raw: Optional[str] = None):
        self.skip = set(skip)
        self.error = error
        self.raw = raw
        self.calls = []

    async def translate_batch(self, items, options):
        self.calls.append((list(items), options))
        if self.error is not None:
            raise self.error
        if self.raw is not None:
            return self.raw
        return json.dumps({
            "translations": [
                {"id": item.id, "text": f"[{item.locale}] {item.source_text}"}
                for index, item in enumerate(items)
                if index not in self.skip
            ]
        })

class StepClock:
    """Monotonic clock that advances by `step` every time it is read."""

    def __init__(self, step: float):
        self.step = step
        self.value = 0.0

    def __call__(self) -> float:
        self.value += self.step
        return self.value
