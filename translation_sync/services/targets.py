"""Source entities and translation sinks, one implementation per JobType.

Each target knows how to page through its source rows, read translation
metadata, and write an automatic translation. Everything else in the sync
loop is content-type agnostic.
"""
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from translation_sync.db.models import Event, EventTranslation, Tag, TagTranslation
from translation_sync.domain.errors import SourceMissingError
from translation_sync.domain.locales import is_translatable_locale
from translation_sync.domain.models import SourceRow, TranslationMeta
from translation_sync.domain.states import JobType
from translation_sync.utils.dialect import upsert_insert

class TranslationTarget:
    job_type: JobType
    source_label: str
    source_model: Any
    source_column: str
    translation_model: Any
    target_column: str
    text_column: str

    def coerce_id(self, target_id: Any) -> Any:
        return target_id

    async def list_page(
        self,
        session: AsyncSession,
        cursor: Optional[Any],
        page_size: int,
    ) -> list[SourceRow]:
        """
        One page of source rows in id order, starting after `cursor`.

        Blank sources come back with empty text rather than being dropped,
        so the caller can still tell a short page from an exhausted corpus.
        """
        id_col = self.source_model.id
        text_col = getattr(self.source_model, self.source_column)

        stmt = select(id_col, text_col).order_by(id_col.asc()).limit(page_size)
        if cursor is not None:
            stmt = stmt.where(id_col > cursor)

        rows = (await session.execute(stmt)).all()
        return [
            SourceRow(id=row[0], text=row[1].strip() if isinstance(row[1], str) else "")
            for row in rows
        ]

    async def load_meta(
        self,
        session: AsyncSession,
        target_ids: Sequence[Any],
        locales: Sequence[str],
    ) -> dict[tuple[str, str], TranslationMeta]:
        """Translation metadata keyed by (str(target_id), locale)."""
        if not target_ids or not locales:
            return {}

        model = self.translation_model
        target_col = getattr(model, self.target_column)
        stmt = select(target_col, model.locale, model.source_hash, model.is_manual).where(
            target_col.in_(list(target_ids)),
            model.locale.in_(list(locales)),
        )

        meta: dict[tuple[str, str], TranslationMeta] = {}
        for target_id, locale, source_hash, is_manual in (await session.execute(stmt)).all():
            if not is_translatable_locale(locale):
                continue
            meta[(str(target_id), locale)] = TranslationMeta(
                source_hash=source_hash if isinstance(source_hash, str) else None,
                is_manual=bool(is_manual),
            )
        return meta

    async def get_meta(
        self,
        session: AsyncSession,
        target_id: Any,
        locale: str,
    ) -> Optional[TranslationMeta]:
        meta = await self.load_meta(session, [self.coerce_id(target_id)], [locale])
        return meta.get((str(target_id), locale))

    async def load_source_text(self, session: AsyncSession, target_id: Any) -> str:
        text_col = getattr(self.source_model, self.source_column)
        stmt = select(text_col).where(self.source_model.id == self.coerce_id(target_id))
        value = (await session.execute(stmt)).scalar_one_or_none()

        source_text = value.strip() if isinstance(value, str) else ""
        if not source_text:
            raise SourceMissingError(
                f"{self.source_label.capitalize()} source for {target_id} is missing or empty"
            )
        return source_text

    async def upsert_translation(
        self,
        session: AsyncSession,
        target_id: Any,
        locale: str,
        text: str,
        source_hash: str,
    ) -> bool:
        """
        Writes an automatic translation. Returns False when a manual
        translation exists, in which case nothing is written.
        """
        model = self.translation_model
        stmt = upsert_insert(session, model).values({
            self.target_column: self.coerce_id(target_id),
            "locale": locale,
            self.text_column: text,
            "source_hash": source_hash,
            "is_manual": False,
        })
        stmt = stmt.on_conflict_do_update(
            index_elements=[self.target_column, "locale"],
            set_={
                self.text_column: getattr(stmt.excluded, self.text_column),
                "source_hash": stmt.excluded.source_hash,
                "is_manual": False,
                "updated_at": func.now(),
            },
            where=model.is_manual.is_(False),
        )
        result = await session.execute(stmt)
        # rowcount is -1 on drivers that cannot report it; treat as written
        return result.rowcount != 0

class EventTitleTarget(TranslationTarget):
    job_type = JobType.EVENT_TITLE
    source_label = "event title"
    source_model = Event
    source_column = "title"
    translation_model = EventTranslation
    target_column = "event_id"
    text_column = "title"

    def coerce_id(self, target_id: Any) -> str:
        return str(target_id)

class TagNameTarget(TranslationTarget):
    job_type = JobType.TAG_NAME
    source_label = "tag name"
    source_model = Tag
    source_column = "name"
    translation_model = TagTranslation
    target_column = "tag_id"
    text_column = "name"

    def coerce_id(self, target_id: Any) -> int:
        return int(target_id)

TARGETS: dict[JobType, TranslationTarget] = {
    JobType.EVENT_TITLE: EventTitleTarget(),
    JobType.TAG_NAME: TagNameTarget(),
}

def get_target(job_type: str) -> TranslationTarget:
    try:
        return TARGETS[JobType(job_type)]
    except ValueError:
        raise ValueError(f"Unsupported translation job type: {job_type}") from None
