"""
Content generation: one Gemini call producing the three derivative texts.

The model must reply with a JSON object holding ``blog_post``, ``short_post``
and ``professional_post``. Anything else (bad JSON, a missing or empty key,
a timeout, a transport error) is an UpstreamError, which the pipeline's
retry policy retries with backoff.
"""

from __future__ import annotations

import asyncio
import json
import re

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from pydantic import ValidationError

from contentforge.core.config import Settings
from contentforge.core.errors import InputValidationError, UpstreamError
from contentforge.core.logging import get_logger
from contentforge.schemas.schemas import GeneratedContent

logger = get_logger(__name__)

GENERATION_SYSTEM_PROMPT = """You are ContentForge, a content strategist who repurposes videos.

From the video information provided, write three pieces of content:

- blog_post: 100-200 words. A short title line, clear headings, actionable takeaways.
  Finish with a one-sentence conclusion.
- short_post: a single post for X. Punchy, at most 280 characters, no hashtags.
- professional_post: a LinkedIn post of at most 300 characters in a professional tone,
  3-6 short bullet points and a call to action at the end.

Base everything on the transcript when one is given; otherwise work from the title and
channel only and stay general rather than inventing specifics.

Return ONLY a JSON object with exactly these keys: blog_post, short_post, professional_post.
No markdown fences, no commentary."""

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")


def parse_generated_content(raw: str) -> GeneratedContent:
    """Extract the three artifacts from a model reply, tolerating fences and chatter."""
    text = _FENCE_OPEN.sub("", raw.strip())
    text = _FENCE_CLOSE.sub("", text).strip()

    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        text = text[first : last + 1]

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise UpstreamError(f"Model reply is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise UpstreamError("Model reply is not a JSON object")

    try:
        return GeneratedContent.model_validate(payload)
    except ValidationError as e:
        missing = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
        raise UpstreamError(f"Model reply missing required keys: {', '.join(missing)}") from e


def _message_text(content: str | list) -> str:
    if isinstance(content, str):
        return content
    # Gemini can return a list of content parts
    return "".join(
        part if isinstance(part, str) else str(part.get("text", ""))
        for part in content
    )


class ContentGenerator:
    def __init__(self, settings: Settings, llm: BaseChatModel | None = None) -> None:
        self._settings = settings
        self._llm = llm
        self._max_transcript_chars = settings.transcript_max_chars
        self._timeout = settings.generation_timeout_seconds

    @property
    def llm(self) -> BaseChatModel:
        if self._llm is None:
            self._llm = ChatGoogleGenerativeAI(
                model=self._settings.model_generator,
                temperature=self._settings.generation_temperature,
                google_api_key=self._settings.google_api_key,
            )
        return self._llm

    def build_messages(
        self,
        source_url: str,
        transcript: str | None = None,
        title: str | None = None,
        author: str | None = None,
    ) -> list:
        lines = [f"Video URL: {source_url}"]
        if title:
            lines.append(f"Title: {title}")
        if author:
            lines.append(f"Channel: {author}")
        if transcript:
            lines.append(f"Transcript:\n{transcript[: self._max_transcript_chars]}")
        else:
            lines.append("Transcript: (not available)")

        return [
            SystemMessage(content=GENERATION_SYSTEM_PROMPT),
            HumanMessage(content="\n".join(lines)),
        ]

    async def generate(
        self,
        source_url: str,
        transcript: str | None = None,
        title: str | None = None,
        author: str | None = None,
    ) -> GeneratedContent:
        if not transcript and not title:
            raise InputValidationError("Nothing to generate from: no transcript and no title")

        messages = self.build_messages(source_url, transcript, title, author)
        try:
            response = await asyncio.wait_for(self.llm.ainvoke(messages), timeout=self._timeout)
        except TimeoutError as e:
            raise UpstreamError(f"Generation timed out after {self._timeout}s") from e
        except Exception as e:
            raise UpstreamError(f"Generation call failed: {e}") from e

        content = parse_generated_content(_message_text(response.content))
        logger.info(
            "content_generated",
            blog_chars=len(content.blog_post),
            short_chars=len(content.short_post),
            professional_chars=len(content.professional_post),
            used_transcript=bool(transcript),
        )
        return content
