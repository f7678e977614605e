"""
Source retrieval collaborators: transcript and lightweight metadata.

Transcripts come from the video's caption tracks (manual subtitles first,
then automatic captions) located with yt-dlp and downloaded with httpx.
Metadata (title / author) comes from the public YouTube oEmbed endpoint and
is the fallback signal when no transcript is available.

Both calls are bounded by a timeout; neither ever blocks the pipeline
indefinitely.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass

import httpx
import yt_dlp

from contentforge.core.config import Settings
from contentforge.core.errors import UpstreamError
from contentforge.core.logging import get_logger

logger = get_logger(__name__)

_OEMBED_URL = "https://www.youtube.com/oembed"
_CAPTION_FORMATS = ("json3", "vtt")
_VTT_TIMING = re.compile(r"^\d{2}:\d{2}(:\d{2})?\.\d{3}\s+-->")
_VTT_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class SourceMetadata:
    title: str
    author: str


# ═══════════════════════════════════════════════════════════════
# Caption parsing
# ═══════════════════════════════════════════════════════════════
def parse_json3_captions(payload: dict) -> str:
    """Flatten YouTube's json3 caption format into plain text."""
    pieces = [
        seg.get("utf8", "")
        for event in payload.get("events", [])
        for seg in event.get("segs") or []
    ]
    return _WHITESPACE.sub(" ", "".join(pieces)).strip()


def parse_vtt_captions(raw: str) -> str:
    """Strip WebVTT headers, cue timings and inline tags; drop rolling duplicates."""
    lines: list[str] = []
    for line in raw.splitlines():
        line = line.strip()
        if not line or line == "WEBVTT" or line.isdigit() or _VTT_TIMING.match(line):
            continue
        if line.startswith(("Kind:", "Language:", "NOTE")):
            continue
        text = _VTT_TAG.sub("", line).strip()
        # Auto captions repeat the previous line as each new cue scrolls in
        if text and (not lines or lines[-1] != text):
            lines.append(text)
    return " ".join(lines)


def _pick_caption_track(info: dict, languages: list[str]) -> tuple[str, str] | None:
    """Return (format, url) of the best caption track, manual before automatic."""
    for tracks in (info.get("subtitles") or {}, info.get("automatic_captions") or {}):
        for lang in languages:
            formats = tracks.get(lang) or []
            for wanted in _CAPTION_FORMATS:
                for fmt in formats:
                    if fmt.get("ext") == wanted and fmt.get("url"):
                        return wanted, fmt["url"]
    return None


# ═══════════════════════════════════════════════════════════════
# Transcript collaborator
# ═══════════════════════════════════════════════════════════════
class TranscriptService:
    def __init__(self, settings: Settings) -> None:
        self._timeout = settings.transcript_timeout_seconds
        self._languages = settings.transcript_languages

    async def fetch(self, source_url: str) -> str:
        """Return the transcript text, or "" when the video has no usable captions."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._fetch_sync, source_url), timeout=self._timeout
            )
        except TimeoutError as e:
            raise UpstreamError(f"Transcript fetch timed out after {self._timeout}s") from e

    def _fetch_sync(self, source_url: str) -> str:
        ydl_opts = {
            "skip_download": True,
            "quiet": True,
            "no_warnings": True,
            "socket_timeout": self._timeout,
        }
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            info = ydl.extract_info(source_url, download=False)

        track = _pick_caption_track(info or {}, self._languages)
        if track is None:
            logger.info("transcript_unavailable", source_url=source_url)
            return ""

        fmt, url = track
        with httpx.Client(timeout=self._timeout) as client:
            resp = client.get(url)
            resp.raise_for_status()

        transcript = parse_json3_captions(resp.json()) if fmt == "json3" else parse_vtt_captions(resp.text)
        logger.info("transcript_fetched", source_url=source_url, format=fmt, length=len(transcript))
        return transcript


# ═══════════════════════════════════════════════════════════════
# Metadata collaborator
# ═══════════════════════════════════════════════════════════════
class MetadataService:
    def __init__(self, settings: Settings) -> None:
        self._timeout = settings.metadata_timeout_seconds

    async def fetch(self, source_url: str) -> SourceMetadata:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(_OEMBED_URL, params={"url": source_url, "format": "json"})
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamError(f"Metadata lookup failed: {e}") from e

        title = str(data.get("title") or "").strip()
        if not title:
            raise UpstreamError("Metadata lookup returned no title")
        return SourceMetadata(title=title, author=str(data.get("author_name") or "").strip())
