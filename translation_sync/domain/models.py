import hashlib
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from translation_sync.domain.errors import PayloadValidationError
from translation_sync.domain.locales import is_translatable_locale
from translation_sync.domain.states import JobType

@dataclass(frozen=True)
class EventTitlePayload:
    event_id: str
    locale: str
    source_title: Optional[str] = None
    source_hash: Optional[str] = None

    @property
    def target_id(self) -> str:
        return self.event_id

    @property
    def source_text(self) -> Optional[str]:
        return self.source_title

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {"event_id": self.event_id, "locale": self.locale}
        if self.source_title is not None:
            data["source_title"] = self.source_title
        if self.source_hash is not None:
            data["source_hash"] = self.source_hash
        return data

@dataclass(frozen=True)
class TagNamePayload:
    tag_id: int
    locale: str
    source_name: Optional[str] = None
    source_hash: Optional[str] = None

    @property
    def target_id(self) -> str:
        return str(self.tag_id)

    @property
    def source_text(self) -> Optional[str]:
        return self.source_name

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {"tag_id": self.tag_id, "locale": self.locale}
        if self.source_name is not None:
            data["source_name"] = self.source_name
        if self.source_hash is not None:
            data["source_hash"] = self.source_hash
        return data

JobPayload = Union[EventTitlePayload, TagNamePayload]

@dataclass(frozen=True)
class JobIdentity:
    target_id: str
    locale: str

@dataclass(frozen=True)
class TranslationMeta:
    source_hash: Optional[str]
    is_manual: bool

@dataclass(frozen=True)
class SourceRow:
    id: Any
    text: str

@dataclass(frozen=True)
class DiscoveredJob:
    """A job row produced by discovery, ready for upsert."""
    job_type: JobType
    payload: JobPayload

    @property
    def dedupe_key(self) -> str:
        return build_dedupe_key(self.payload.target_id, self.payload.locale)

def build_source_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()

def build_dedupe_key(target_id: Any, locale: str) -> str:
    return f"{target_id}:{locale}"

def split_dedupe_key(dedupe_key: str) -> JobIdentity:
    parts = dedupe_key.split(":")
    target_id = parts[0] if parts and parts[0] else "unknown"
    locale = parts[1] if len(parts) > 1 and parts[1] else "unknown"
    return JobIdentity(target_id=target_id, locale=locale)

def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None

def _parse_event_payload(raw: dict[str, Any], dedupe_key: str) -> EventTitlePayload:
    event_id = raw.get("event_id")
    if not isinstance(event_id, str) or not event_id:
        raise PayloadValidationError(dedupe_key, "missing event_id")

    locale = raw.get("locale")
    if not is_translatable_locale(locale):
        raise PayloadValidationError(dedupe_key, "locale must be a non-default locale")

    return EventTitlePayload(
        event_id=event_id,
        locale=locale,
        source_title=_optional_str(raw.get("source_title")),
        source_hash=_optional_str(raw.get("source_hash")),
    )

def _parse_tag_payload(raw: dict[str, Any], dedupe_key: str) -> TagNamePayload:
    raw_tag_id = raw.get("tag_id")
    tag_id: Optional[int] = None
    if isinstance(raw_tag_id, int) and not isinstance(raw_tag_id, bool):
        tag_id = raw_tag_id
    elif isinstance(raw_tag_id, str) and raw_tag_id.strip().isdigit():
        tag_id = int(raw_tag_id.strip())

    if tag_id is None or tag_id <= 0:
        raise PayloadValidationError(dedupe_key, "missing or invalid tag_id")

    locale = raw.get("locale")
    if not is_translatable_locale(locale):
        raise PayloadValidationError(dedupe_key, "locale must be a non-default locale")

    return TagNamePayload(
        tag_id=tag_id,
        locale=locale,
        source_name=_optional_str(raw.get("source_name")),
        source_hash=_optional_str(raw.get("source_hash")),
    )

def parse_payload(job_type: str, raw: Any, dedupe_key: str) -> JobPayload:
    """Deserializes a stored job payload. Raises PayloadValidationError."""
    if not isinstance(raw, dict):
        raise PayloadValidationError(dedupe_key, "expected object")

    if job_type == JobType.EVENT_TITLE:
        return _parse_event_payload(raw, dedupe_key)
    if job_type == JobType.TAG_NAME:
        return _parse_tag_payload(raw, dedupe_key)

    raise PayloadValidationError(dedupe_key, f"unsupported job type {job_type}")

def try_parse_payload(job_type: str, raw: Any, dedupe_key: str) -> Optional[JobPayload]:
    """Like parse_payload, but returns None instead of raising."""
    try:
        return parse_payload(job_type, raw, dedupe_key)
    except PayloadValidationError:
        return None

def job_identity(job_type: str, raw_payload: Any, dedupe_key: str) -> JobIdentity:
    payload = try_parse_payload(job_type, raw_payload, dedupe_key)
    if payload is None:
        return split_dedupe_key(dedupe_key)
    return JobIdentity(target_id=payload.target_id, locale=payload.locale)

def build_payload(job_type: JobType, target_id: Any, locale: str, source_text: str, source_hash: str) -> JobPayload:
    if job_type == JobType.EVENT_TITLE:
        return EventTitlePayload(
            event_id=str(target_id),
            locale=locale,
            source_title=source_text,
            source_hash=source_hash,
        )
    if job_type == JobType.TAG_NAME:
        return TagNamePayload(
            tag_id=int(target_id),
            locale=locale,
            source_name=source_text,
            source_hash=source_hash,
        )
    raise ValueError(f"Unsupported job type: {job_type}")

@dataclass
class SyncError:
    job_type: str
    target_id: str
    locale: str
    error: str

    def to_json(self) -> dict[str, str]:
        return {
            "jobType": self.job_type,
            "targetId": self.target_id,
            "locale": self.locale,
            "error": self.error,
        }

@dataclass
class SyncStats:
    scanned: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    skipped_manual: int = 0
    skipped_up_to_date: int = 0
    enqueued: dict[JobType, int] = field(default_factory=lambda: {job_type: 0 for job_type in JobType})
    time_limit_reached: bool = False
    errors: list[SyncError] = field(default_factory=list)
    max_errors: int = 50

    def add_error(self, job_type: str, identity: JobIdentity, message: str) -> None:
        if len(self.errors) >= self.max_errors:
            return
        self.errors.append(SyncError(
            job_type=job_type,
            target_id=identity.target_id,
            locale=identity.locale,
            error=message,
        ))

    def to_json(self) -> dict[str, Any]:
        return {
            "scanned": self.scanned,
            "completed": self.completed,
            "retried": self.retried,
            "failed": self.failed,
            "skippedManual": self.skipped_manual,
            "skippedUpToDate": self.skipped_up_to_date,
            "enqueuedEventJobs": self.enqueued[JobType.EVENT_TITLE],
            "enqueuedTagJobs": self.enqueued[JobType.TAG_NAME],
            "timeLimitReached": self.time_limit_reached,
            "errors": [error.to_json() for error in self.errors],
        }

@dataclass
class SyncResult:
    success: bool
    stats: SyncStats
    skipped: bool = False
    reason: Optional[str] = None
    error: Optional[str] = None

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.skipped:
            data["skipped"] = True
            data["reason"] = self.reason
        if self.error is not None:
            data["error"] = self.error
        data.update(self.stats.to_json())
        return data
