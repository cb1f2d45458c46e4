"""Guide proxy integration — HTTP client for the guide generation endpoint.

Implements GuideGenerator over the proxy's JSON/event-stream contract:

- generateGuide (non-streaming): one JSON body with the guide, or {"error"}.
- generateGuide with stream=true: `data: {"text": ...}` frames, an optional
  `data: {"error": ...}` frame, and a closing `data: [DONE]`.
- analyzeNote: interests and personality extracted from a note.
- searchRelated: news search suggestions for a tip (degrades to []).
- assistantChat: a free-form answer grounded in the user's meetings and contacts.

The proxy answers logical errors with HTTP 200 and an "error" field, so the
body is checked as well as the status.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from typing import AsyncIterator
from urllib.parse import quote_plus

import httpx

from src.core.guide_parser import clean_llm_response, parse_final_guide, parse_partial_guide
from src.core.guide_request import (
    GuideRequest,
    build_note_analysis_request,
    build_related_search_request,
)
from src.data.models import NoteAnalysis, PartialGuide, RelatedArticle, SmallTalkGuide
from src.ports.generation_port import (
    GuideCompleted,
    GuideEvent,
    GuideProgress,
    MalformedResponseError,
    StreamProtocolError,
    TransportError,
)

logger = logging.getLogger(__name__)

_DONE_MARKER = "[DONE]"
_NEWS_SEARCH_URL = "https://news.google.com/search?q={query}&hl=ko&gl=KR&ceid=KR:ko"
_MAX_RELATED_ARTICLES = 5


async def iter_sse_frames(lines: AsyncIterator[str]) -> AsyncIterator[dict]:
    """Decode `data:` lines into JSON frames until `[DONE]` or end of body.

    Blank lines, non-data lines and frames that are not JSON objects are
    skipped.
    """
    async for line in lines:
        line = line.rstrip("\r\n")
        if not line.startswith("data:"):
            continue
        data = line[len("data:"):].strip()
        if not data:
            continue
        if data == _DONE_MARKER:
            return
        try:
            frame = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Skipping unparseable stream frame: %s", data[:80])
            continue
        if isinstance(frame, dict):
            yield frame


def _raise_for_error_body(text: str) -> None:
    """Raise StreamProtocolError when the body is an {"error": ...} object."""
    try:
        data = json.loads(clean_llm_response(text))
    except json.JSONDecodeError:
        return
    if isinstance(data, dict) and data.get("error"):
        raise StreamProtocolError(str(data["error"]))


def _clean_keywords(values) -> list[str]:
    if not isinstance(values, list):
        return []
    return [v.strip() for v in values if isinstance(v, str) and v.strip()]


class ProxyGuideClient:
    """httpx implementation of GuideGenerator."""

    def __init__(
        self,
        endpoint_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        stream_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if endpoint_url is None or api_key is None or timeout is None or stream_timeout is None:
            from src.config import settings

            endpoint_url = endpoint_url or settings.GUIDE_ENDPOINT_URL
            api_key = api_key or settings.GUIDE_API_KEY
            timeout = timeout or settings.REQUEST_TIMEOUT_SECONDS
            stream_timeout = stream_timeout or settings.STREAM_TIMEOUT_SECONDS

        self._endpoint_url = endpoint_url
        self._api_key = api_key
        self._timeout = timeout
        self._stream_timeout = stream_timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
            "apikey": self._api_key,
        }

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def _post(self, request: GuideRequest) -> str:
        """POST a request and return the body text after status checks."""
        try:
            async with self._client(self._timeout) as client:
                resp = await client.post(
                    self._endpoint_url, json=request.body, headers=self._headers(),
                )
        except httpx.HTTPError as exc:
            raise TransportError(f"Failed to reach guide proxy: {exc}") from exc

        if not resp.is_success:
            raise TransportError(f"Guide proxy error ({resp.status_code}): {resp.text}")

        text = resp.text
        _raise_for_error_body(text)
        return text

    # ------------------------------------------------------------------
    # Guide generation
    # ------------------------------------------------------------------

    async def generate_guide(self, request: GuideRequest) -> SmallTalkGuide:
        """Single request/response generation, used by prefetch."""
        if request.stream:
            request = replace(request, stream=False)
        text = await self._post(request)
        guide = parse_final_guide(text)
        logger.info("Guide generated for meeting %s", request.meeting_id)
        return guide

    async def stream_guide(self, request: GuideRequest) -> AsyncIterator[GuideEvent]:
        """Stream a guide, yielding partial snapshots then the final guide.

        The sequence is finite and cannot be restarted. It ends with exactly
        one GuideCompleted, or raises a GenerationError subclass.
        """
        if not request.stream:
            request = replace(request, stream=True)

        full_text = ""
        last_partial: PartialGuide | None = None
        try:
            async with self._client(self._stream_timeout) as client:
                async with client.stream(
                    "POST", self._endpoint_url, json=request.body, headers=self._headers(),
                ) as resp:
                    if not resp.is_success:
                        body = (await resp.aread()).decode("utf-8", errors="replace")
                        raise TransportError(f"Guide proxy error ({resp.status_code}): {body}")

                    async for frame in iter_sse_frames(resp.aiter_lines()):
                        if frame.get("error"):
                            raise StreamProtocolError(str(frame["error"]))
                        fragment = frame.get("text")
                        if not isinstance(fragment, str) or not fragment:
                            continue
                        full_text += fragment
                        partial = parse_partial_guide(full_text)
                        if partial is not None and partial != last_partial:
                            last_partial = partial
                            yield GuideProgress(partial=partial)
        except httpx.HTTPError as exc:
            raise TransportError(f"Guide stream interrupted: {exc}") from exc

        if not full_text.strip():
            raise MalformedResponseError("Guide stream ended without any text")

        guide = parse_final_guide(full_text)
        logger.info("Guide streamed for meeting %s (%d chars)", request.meeting_id, len(full_text))
        yield GuideCompleted(guide=guide)

    # ------------------------------------------------------------------
    # Auxiliary actions
    # ------------------------------------------------------------------

    async def analyze_note(self, note: str) -> NoteAnalysis:
        """Extract interests and personality from a meeting note."""
        text = await self._post(build_note_analysis_request(note))
        try:
            data = json.loads(clean_llm_response(text))
        except json.JSONDecodeError as exc:
            raise MalformedResponseError(f"Note analysis is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise MalformedResponseError("Note analysis must be an object")

        personality = data.get("personality")
        return NoteAnalysis(
            business_interests=_clean_keywords(data.get("businessInterests")),
            lifestyle_interests=_clean_keywords(data.get("lifestyleInterests")),
            personality=personality.strip() if isinstance(personality, str) else "",
        )

    async def search_related(self, tip_content: str, tip_type: str) -> list[RelatedArticle]:
        """Suggest news searches related to a guide tip.

        Gracefully degrades: returns [] on any failure.
        """
        try:
            text = await self._post(build_related_search_request(tip_content, tip_type))
            data = json.loads(clean_llm_response(text))
            results = data.get("results", []) if isinstance(data, dict) else []

            articles: list[RelatedArticle] = []
            for item in results:
                if not isinstance(item, dict):
                    continue
                query = item.get("query")
                if not isinstance(query, str) or not query.strip():
                    continue
                title = item.get("title") if isinstance(item.get("title"), str) else query
                articles.append(RelatedArticle(
                    title=title,
                    query=query,
                    url=_NEWS_SEARCH_URL.format(query=quote_plus(query)),
                ))
            return articles[:_MAX_RELATED_ARTICLES]
        except Exception as exc:
            logger.warning("Related article search failed for %s tip: %s", tip_type, exc)
            return []

    async def assistant_chat(self, request: GuideRequest) -> str:
        """Answer a free-form question about the user's schedule and contacts."""
        text = await self._post(request)
        try:
            data = json.loads(clean_llm_response(text))
        except json.JSONDecodeError as exc:
            raise MalformedResponseError(f"Assistant answer is not valid JSON: {exc}") from exc
        answer = data.get("answer") if isinstance(data, dict) else None
        if not isinstance(answer, str) or not answer.strip():
            raise MalformedResponseError("Assistant response has no answer")
        return answer.strip()
