import asyncio
import json
import logging
from typing import Any, Dict, Optional, Sequence

import httpx

from translation_sync.domain.errors import TranslationProviderError
from translation_sync.services.translator import BatchItem, TranslationOptions

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}
RETRY_DELAY_SECONDS = 0.35

SYSTEM_PROMPT = (
    "You are a translation engine specialized in short labels and event titles. "
    "You translate from English and reply with JSON only."
)

def build_user_prompt(items: Sequence[BatchItem]) -> str:
    return "\n".join([
        "Translate each item's source_text from English into the language given by its locale_label (locale).",
        "Rules:",
        "- Reply with a single JSON object of the form {\"translations\": [{\"id\": \"<item id>\", \"text\": \"<translation>\"}]}.",
        "- Include exactly one entry per item and copy each id unchanged.",
        "- Do not add quotes, bullet points, prefixes, suffixes, or explanations to the translated text.",
        "- Preserve names, acronyms, tickers, numbers, and dates exactly when appropriate.",
        "- Keep the tone neutral and concise.",
        "Items:",
        json.dumps([item.to_json() for item in items], ensure_ascii=False),
    ])

class OpenRouterClient:
    """Chat-completions client used as the batch Translator."""

    def __init__(
        self,
        api_url: str,
        timeout: float = 45.0,
        site_url: Optional[str] = None,
        site_name: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_retries: int = 1,
    ):
        self.api_url = api_url
        self.site_url = site_url
        self.site_name = site_name
        self.max_retries = max_retries
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    def _build_headers(self, api_key: str) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }
        if self.site_url:
            headers["HTTP-Referer"] = self.site_url
        if self.site_name:
            headers["X-Title"] = self.site_name
        return headers

    def _build_body(self, items: Sequence[BatchItem], options: TranslationOptions) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(items)},
            ],
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        if options.model:
            body["model"] = options.model
        return body

    async def translate_batch(self, items: Sequence[BatchItem], options: TranslationOptions) -> str:
        if not options.api_key:
            raise TranslationProviderError("OpenRouter API key is not configured.")

        headers = self._build_headers(options.api_key)
        body = self._build_body(items, options)

        attempt = 0
        while True:
            attempt += 1
            try:
                resp = await self.client.post(self.api_url, json=body, headers=headers)
            except httpx.TimeoutException as e:
                if attempt <= self.max_retries:
                    logger.warning("OpenRouter request timed out, retrying (%d)", attempt)
                    await asyncio.sleep(RETRY_DELAY_SECONDS)
                    continue
                raise TranslationProviderError(f"OpenRouter request timed out: {e}") from e
            except httpx.HTTPError as e:
                raise TranslationProviderError(f"OpenRouter request failed: {e}") from e

            if resp.status_code in RETRYABLE_STATUS and attempt <= self.max_retries:
                logger.warning("OpenRouter returned %s, retrying (%d)", resp.status_code, attempt)
                await asyncio.sleep(RETRY_DELAY_SECONDS)
                continue
            break

        if resp.status_code >= 400:
            raise TranslationProviderError(f"OpenRouter request failed: {resp.status_code} {resp.text}")

        try:
            completion = resp.json()
        except ValueError as e:
            raise TranslationProviderError("OpenRouter response was not valid JSON") from e

        content = None
        choices = completion.get("choices") if isinstance(completion, dict) else None
        if isinstance(choices, list) and choices:
            message = choices[0].get("message") if isinstance(choices[0], dict) else None
            if isinstance(message, dict):
                content = message.get("content")

        if not isinstance(content, str) or not content.strip():
            raise TranslationProviderError("OpenRouter response did not contain any content.")

        return content.strip()

    async def close(self):
        await self.client.aclose()
