"""
Enrichment (AI rewrite) capability and its rate-limited gateway.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import aiohttp
import pydantic

from .config import EnrichmentSettings
from .errors import EnrichmentError, RateLimitExceeded
from .infra.http import HttpClient, parse_retry_after
from .interfaces import Enricher
from .models import Candidate, Enrichment, Source
from .ratelimit import RateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")

CATEGORIES = ("Politics", "Business", "Technology", "Health", "Sports", "Entertainment", "Education", "Other")

SYSTEM_PROMPT = (
    "Role: You are an AI News Analyst, designated Sentinel-PP-01. Location: Phnom Penh, Cambodia. "
    "Audience: Cambodian readers."
)

ARTICLE_PROMPT = """You will output ONE valid JSON object only. No markdown.
Schema:
{{
  "category": string,
  "tags": string[],
  "title": string,
  "description": string,
  "content": string,
  "keywords": string{kh_schema}
}}

Constraints:
- Neutral professional tone, AP/Reuters style.
- Emphasize Cambodia/ASEAN context and implications.
- Headline <= 75 chars, description <= 160 chars.
- content: 600-1200 words, structured paragraphs, who/what/when/where/why/how.
- category: one of {categories}.
- tags: 5-7 lowercase keywords, no '#'.

Source: {source}
Title: {title}
Link: {url}
Published: {published}
Summary: {summary}

Return ONLY the JSON object."""

KH_SCHEMA = """,
  "title_kh": string,
  "description_kh": string,
  "content_kh": string"""

CLASSIFY_PROMPT = """Label the article below for publication safety. Output ONE JSON object only:
{{"labels": string[]}} using any of: hate, violence, sexual, misinformation, self-harm, political-bias.
Return an empty list when none apply.

Title: {title}
Text: {text}"""

_RETRY_DELAY_RE = re.compile(r'retryDelay\\?"?:\s*\\?"?(\d+)s')
_FENCE_RE = re.compile(r"```(?:json)?\s*|```")


def extract_json(text: str) -> Dict[str, Any]:
    """Pull the outermost JSON object out of a model reply (fences tolerated)."""
    cleaned = _FENCE_RE.sub("", text or "").strip()
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        raise EnrichmentError("No JSON object in model reply")
    try:
        value = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as e:
        raise EnrichmentError(f"Malformed JSON in model reply: {e}") from e
    if not isinstance(value, dict):
        raise EnrichmentError("Model reply is not a JSON object")
    return value


def _quota_delay(error: aiohttp.ClientResponseError, body: str = "") -> float:
    """Seconds to wait after a 429, clamped to 15..120."""
    delay = parse_retry_after(error.headers.get("Retry-After") if error.headers else None)
    if delay is None:
        match = _RETRY_DELAY_RE.search(body or error.message or "")
        delay = float(match.group(1)) if match else 60.0
    return min(max(delay, 15.0), 120.0)


class OpenAICompatibleEnricher(Enricher):
    """Chat-completions client (Gemini's OpenAI-compatible endpoint by default)."""

    def __init__(self, settings: EnrichmentSettings, http: Optional[HttpClient] = None):
        if not settings.api_key:
            raise ValueError("enrichment api_key is required")
        self.settings = settings
        self.http = http or HttpClient(timeout=settings.timeout_s)

    @property
    def model(self) -> str:
        return self.settings.model

    async def _complete(self, prompt: str) -> str:
        url = f"{self.settings.base_url.rstrip('/')}/chat/completions"
        payload = {
            "model": self.settings.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.4,
        }
        headers = {"Authorization": f"Bearer {self.settings.api_key}"}
        try:
            # 429 is left to the rate limiter, not retried here
            data = await self.http.post_json(url, payload, headers=headers, retry_for_status=(500, 502, 503, 504))
        except aiohttp.ClientResponseError as e:
            if e.status == 429:
                raise RateLimitExceeded(f"Enrichment quota exceeded: {e.message}", retry_after=_quota_delay(e)) from e
            raise EnrichmentError(f"Enrichment API error {e.status}: {e.message}") from e
        except aiohttp.ClientError as e:
            raise EnrichmentError(f"Enrichment API unreachable: {e}") from e
        except ValueError as e:
            raise EnrichmentError(f"Enrichment API returned a non-JSON body: {e}") from e

        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise EnrichmentError("Unexpected chat completion payload") from e

    async def enrich(self, candidate: Candidate, source: Optional[Source] = None) -> Enrichment:
        prompt = ARTICLE_PROMPT.format(
            kh_schema=KH_SCHEMA if self.settings.translate_kh else "",
            categories=", ".join(CATEGORIES),
            source=candidate.source_name or (source.name if source else ""),
            title=candidate.title,
            url=candidate.url,
            published=candidate.published_at.isoformat() if candidate.published_at else "",
            summary=candidate.body[:500],
        )
        data = extract_json(await self._complete(prompt))
        if not all(isinstance(data.get(k), str) and data[k].strip() for k in ("title", "description", "content")):
            raise EnrichmentError("Model reply is missing title, description or content")
        tags = data.get("tags") or []
        if isinstance(tags, str):
            tags = [t.strip() for t in tags.split(",")]
        elif not isinstance(tags, list):
            tags = []
        try:
            return self._to_enrichment(data, tags)
        except pydantic.ValidationError as e:
            raise EnrichmentError(f"Model reply has invalid fields: {e.error_count()} error(s)") from e

    def _to_enrichment(self, data: Dict[str, Any], tags: List[Any]) -> Enrichment:
        return Enrichment(
            title=data["title"].strip(),
            description=data["description"].strip(),
            content=data["content"].strip(),
            category=data.get("category") if data.get("category") in CATEGORIES else "Other",
            tags=[str(t).strip().lower().lstrip("#") for t in tags if str(t).strip()],
            keywords=data.get("keywords") if isinstance(data.get("keywords"), str) else None,
            title_kh=data.get("title_kh"),
            description_kh=data.get("description_kh"),
            content_kh=data.get("content_kh"),
            model=self.settings.model,
        )

    async def classify(self, candidate: Candidate) -> List[str]:
        prompt = CLASSIFY_PROMPT.format(title=candidate.title, text=candidate.body[:2000])
        data = extract_json(await self._complete(prompt))
        labels = data.get("labels") or []
        if not isinstance(labels, list):
            raise EnrichmentError("labels must be a list")
        return [str(label).strip().lower() for label in labels if str(label).strip()]


class EnrichmentGateway:
    """Puts the rate limiter, a timeout and the degraded-mode fallback in front of an Enricher.

    Every method returns ``None`` instead of raising when the call was skipped
    or failed; callers synthesize in that case.
    """

    def __init__(self, enricher: Optional[Enricher], limiter: RateLimiter, timeout: float = 45.0):
        self.enricher = enricher
        self.limiter = limiter
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return self.enricher is not None

    @property
    def degraded(self) -> bool:
        return self.enricher is not None and self.limiter.degraded

    @property
    def model(self) -> Optional[str]:
        return self.enricher.model if self.enricher is not None else None

    async def enrich(self, candidate: Candidate, source: Optional[Source] = None) -> Optional[Enrichment]:
        if self.enricher is None:
            return None
        return await self._call(lambda: self.enricher.enrich(candidate, source), f"enrich '{candidate.title[:60]}'")

    async def classify(self, candidate: Candidate) -> Optional[List[str]]:
        if self.enricher is None:
            return None
        return await self._call(lambda: self.enricher.classify(candidate), f"classify '{candidate.title[:60]}'")

    async def _call(self, factory: Callable[[], Awaitable[T]], what: str) -> Optional[T]:
        if not self.limiter.allow():
            logger.debug(f"Enrichment skipped ({what}): rate limited or backing off")
            return None
        try:
            result = await asyncio.wait_for(factory(), timeout=self.timeout)
        except RateLimitExceeded as e:
            self.limiter.record_failure(retry_after=e.retry_after)
            logger.warning(f"Enrichment quota hit ({what}), cooldown {e.retry_after or 0:.0f}s")
            return None
        except asyncio.TimeoutError:
            self.limiter.record_failure()
            logger.warning(f"Enrichment timed out after {self.timeout:.0f}s ({what})")
            return None
        except EnrichmentError as e:
            self.limiter.record_failure()
            logger.warning(f"Enrichment failed ({what}): {e}")
            return None
        except Exception:
            self.limiter.record_failure()
            logger.exception(f"Enricher raised unexpectedly ({what})")
            return None
        self.limiter.record_success()
        return result
