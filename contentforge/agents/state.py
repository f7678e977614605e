"""
LangGraph state for the generation pipeline.

This is scratch state for one pipeline run only. The authoritative record is
the ContentRequest in the store, and every node that changes the lifecycle
status does so through the TransitionEngine.
"""

from __future__ import annotations

from typing import NotRequired, TypedDict


class GenerationState(TypedDict):
    request_id: str
    source_url: str
    current_step: str

    # ── Source signal ───────────────────────────────────────
    transcript: NotRequired[str]
    title: NotRequired[str | None]
    author: NotRequired[str | None]

    # ── Generated artifacts ─────────────────────────────────
    blog_post: NotRequired[str]
    short_post: NotRequired[str]
    professional_post: NotRequired[str]

    # Set when the run ended in the error state without raising
    failed: NotRequired[bool]
