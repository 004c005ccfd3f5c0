"""Batch translation: one provider request per sync cycle.

Builds the request items, hands them to a Translator, and turns the raw
model output back into a {job_id: text} mapping.
"""
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

from translation_sync.api.v1.metrics import PROVIDER_CALL_DURATION, PROVIDER_CALL_TOTAL
from translation_sync.domain.errors import (
    MissingBatchEntryError,
    ResponseParseError,
    TranslationProviderError,
)
from translation_sync.domain.locales import locale_label

logger = logging.getLogger(__name__)

BASE_MAX_TOKENS = 200
MAX_TOKENS_PER_ITEM = 120

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", re.DOTALL)
_EDGE_QUOTES = "'\"`“”‘’"

@dataclass(frozen=True)
class BatchItem:
    id: str
    source_text: str
    source_label: str
    locale: str
    locale_label: str

    def to_json(self) -> dict[str, str]:
        return {
            "id": self.id,
            "source_text": self.source_text,
            "source_label": self.source_label,
            "locale": self.locale,
            "locale_label": self.locale_label,
        }

@dataclass(frozen=True)
class TranslationOptions:
    api_key: str
    model: Optional[str] = None
    temperature: float = 0.0
    max_tokens: int = BASE_MAX_TOKENS

class Translator(Protocol):
    async def translate_batch(self, items: Sequence[BatchItem], options: TranslationOptions) -> str:
        ...

def build_item(job_id: Any, source_text: str, source_label: str, locale: str) -> BatchItem:
    return BatchItem(
        id=str(job_id),
        source_text=source_text,
        source_label=source_label,
        locale=locale,
        locale_label=locale_label(locale),
    )

def max_tokens_for(items: Sequence[BatchItem]) -> int:
    return BASE_MAX_TOKENS + MAX_TOKENS_PER_ITEM * len(items)

def normalize_translated_text(value: str) -> str:
    """Trims whitespace and wrapping quotes the model sometimes adds."""
    return value.strip().strip(_EDGE_QUOTES + " \t\r\n").strip()

def _strip_code_fence(raw: str) -> str:
    text = raw.strip()
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    return text

def _extract_json_object(raw: str) -> Any:
    text = _strip_code_fence(raw)
    try:
        return json.loads(text)
    except ValueError:
        pass

    # Models occasionally wrap the object in prose; fall back to the
    # outermost braces.
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise ResponseParseError("Translation response is not valid JSON")
    try:
        return json.loads(text[start:end + 1])
    except ValueError as e:
        raise ResponseParseError(f"Translation response is not valid JSON: {e}") from e

def parse_batch_response(raw: str) -> dict[str, str]:
    """
    Parses {"translations": [{"id": ..., "text": ...}, ...]}.

    Raises ResponseParseError when the payload as a whole is unusable.
    Malformed entries are dropped; for duplicate ids the last one wins.
    Texts are normalized but may be empty; callers decide what empty means.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise ResponseParseError("Translation response was empty")

    parsed = _extract_json_object(raw)
    if not isinstance(parsed, dict):
        raise ResponseParseError("Translation response is not a JSON object")

    entries = parsed.get("translations")
    if not isinstance(entries, list) or not entries:
        raise ResponseParseError("Translation response has no translations")

    results: dict[str, str] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        entry_id = entry.get("id")
        text = entry.get("text")
        if isinstance(entry_id, bool) or not isinstance(entry_id, (str, int)):
            continue
        if not isinstance(text, str):
            continue
        results[str(entry_id).strip()] = normalize_translated_text(text)

    return results

def pick_translation(results: dict[str, str], job_id: Any) -> str:
    """Text for one job, or MissingBatchEntryError scoped to that job."""
    key = str(job_id)
    if key not in results:
        raise MissingBatchEntryError(f"Translation response omitted job {key}")
    text = results[key]
    if not text:
        raise MissingBatchEntryError(f"Model returned an empty translation for job {key}")
    return text

async def translate_batch(
    translator: Translator,
    items: Sequence[BatchItem],
    api_key: str,
    model: Optional[str] = None,
) -> dict[str, str]:
    """
    Sends all items in one request.

    Any failure of the call itself (transport, auth, status) or of the
    response as a whole surfaces as TranslationProviderError or
    ResponseParseError, which the caller applies to every job in the batch.
    """
    options = TranslationOptions(
        api_key=api_key,
        model=model,
        temperature=0.0,
        max_tokens=max_tokens_for(items),
    )

    start = time.perf_counter()
    try:
        raw = await translator.translate_batch(items, options)
    except TranslationProviderError:
        PROVIDER_CALL_TOTAL.labels(result="error").inc()
        raise
    except Exception as e:
        PROVIDER_CALL_TOTAL.labels(result="error").inc()
        raise TranslationProviderError(f"Translation request failed: {e}") from e
    finally:
        PROVIDER_CALL_DURATION.observe(time.perf_counter() - start)

    try:
        results = parse_batch_response(raw)
    except ResponseParseError:
        PROVIDER_CALL_TOTAL.labels(result="error").inc()
        raise

    PROVIDER_CALL_TOTAL.labels(result="ok").inc()
    logger.info("Batch translation returned %d/%d items", len(results), len(items))
    return results
