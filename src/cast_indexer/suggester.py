"""Optional tag suggestions from a language model.

The suggester is a plug-in point: the indexer works the same with no
suggester, a real one, or a test double. Suggestions are best-effort and a
failing call yields no suggestions rather than an error.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
import json
import logging
from typing import Optional

import httpx

from .config import Settings


logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 5


class TagSuggester(ABC):
    @abstractmethod
    async def suggest_tags(self, text: str) -> list[str]:
        """Return zero or more single-word tags for ``text``."""


class OpenAITagSuggester(TagSuggester):
    """Chat-completions backed suggester."""

    def __init__(
        self,
        *,
        api_key: str,
        model_name: str,
        base_url: str,
        timeout_seconds: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.model_name = model_name
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def suggest_tags(self, text: str) -> list[str]:
        if not text or not text.strip():
            return []

        try:
            return await self._call_openai(text)
        except Exception as exc:
            logger.warning(f"Tag suggestion failed: {exc}")
            return []

    async def _call_openai(self, text: str) -> list[str]:
        system_prompt = (
            "You suggest topical tags for a short social media post. "
            f"Reply with a JSON object {{\"tags\": [...]}} holding at most {MAX_SUGGESTIONS} "
            "single words without the # sign. Reply with an empty list when "
            "the post has no clear topic."
        )
        request_payload = {
            "model": self.model_name,
            "temperature": 0,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": text},
            ],
            "response_format": {"type": "json_object"},
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            response = await client.post(
                f"{self.base_url}/chat/completions",
                headers=headers,
                json=request_payload,
            )

        if response.status_code >= 400:
            body_preview = response.text[:500]
            raise RuntimeError(f"Suggestion request failed: status={response.status_code}, body={body_preview}")

        try:
            body = response.json()
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"Suggestion response is not valid JSON: {exc}") from exc

        choices = body.get("choices") if isinstance(body, dict) else None
        if not isinstance(choices, list) or not choices:
            raise RuntimeError("Suggestion response missing choices")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = (message or {}).get("content")
        if not isinstance(content, str) or not content.strip():
            return []

        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"Suggestion content is not valid JSON: {exc}") from exc

        tags = parsed.get("tags") if isinstance(parsed, dict) else None
        if not isinstance(tags, list):
            raise RuntimeError("Suggestion content has no tags list")

        return [t for t in tags if isinstance(t, str)][:MAX_SUGGESTIONS]


def select_suggester(settings: Settings) -> Optional[TagSuggester]:
    mode = settings.tag_suggester.strip().lower()
    api_key = settings.openai_api_key.strip()

    if mode == "openai" and api_key:
        return OpenAITagSuggester(
            api_key=api_key,
            model_name=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.openai_timeout_seconds,
        )

    if mode == "openai":
        logger.warning("Tag suggester set to openai but no API key configured")
    return None
