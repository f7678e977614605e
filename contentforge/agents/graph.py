"""
Generation pipeline: turns a queued request into a generated (or error) record.

Architecture: a small LangGraph StateGraph whose nodes advance the lifecycle
through the TransitionEngine. Collaborators are injected, never module globals.

Flow:
  START → transcribe ─(no transcript and no metadata)→ END  [status: error]
                     └→ start_generation → generate [retry w/ backoff] → finalize → END

A generation failure that survives the retry policy propagates out of
``PipelineDriver.run``; the caller records it (TransitionEngine.fail).
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Literal

import structlog
from langgraph.graph import END, START, StateGraph
from langgraph.types import RetryPolicy

from contentforge.agents.lifecycle import TransitionEngine
from contentforge.agents.nodes.content_gen import ContentGenerator
from contentforge.agents.state import GenerationState
from contentforge.core.config import Settings
from contentforge.core.errors import UpstreamError
from contentforge.core.logging import get_logger
from contentforge.core.security import sanitize_generated_text
from contentforge.models.models import RequestStatus
from contentforge.schemas.schemas import ContentRequest
from contentforge.services.transcript_service import MetadataService, TranscriptService

logger = get_logger(__name__)


def build_retry_policy(settings: Settings) -> RetryPolicy:
    """Retry only upstream failures (bad JSON, missing keys, timeouts), never bugs."""
    return RetryPolicy(
        max_attempts=settings.generation_max_attempts,
        initial_interval=settings.generation_backoff_base,
        backoff_factor=2.0,
        jitter=settings.generation_retry_jitter,
        retry_on=UpstreamError,
    )


class PipelineDriver:
    def __init__(
        self,
        engine: TransitionEngine,
        transcripts: TranscriptService,
        metadata: MetadataService,
        generator: ContentGenerator,
        *,
        approval_ttl: timedelta,
        retry_policy: RetryPolicy,
    ) -> None:
        self._engine = engine
        self._transcripts = transcripts
        self._metadata = metadata
        self._generator = generator
        self._approval_ttl = approval_ttl
        self._graph = self._build_graph(retry_policy)

    async def run(self, request_id: str) -> ContentRequest:
        record = await self._engine.get(request_id)
        with structlog.contextvars.bound_contextvars(request_id=request_id):
            logger.info("pipeline_started", source_url=record.source_url)
            initial_state: GenerationState = {
                "request_id": request_id,
                "source_url": record.source_url,
                "current_step": "starting",
            }
            await self._graph.ainvoke(initial_state)
            final = await self._engine.get(request_id)
            logger.info("pipeline_finished", status=final.status.value)
        return final

    # ── Graph ───────────────────────────────────────────────
    def _build_graph(self, retry_policy: RetryPolicy):
        workflow = StateGraph(GenerationState)

        workflow.add_node("transcribe", self._transcribe_node)
        workflow.add_node("start_generation", self._start_generation_node)
        workflow.add_node("generate", self._generate_node, retry_policy=retry_policy)
        workflow.add_node("finalize", self._finalize_node)

        workflow.add_edge(START, "transcribe")
        workflow.add_conditional_edges(
            "transcribe",
            _route_after_transcribe,
            {"start_generation": "start_generation", "end": END},
        )
        workflow.add_edge("start_generation", "generate")
        workflow.add_edge("generate", "finalize")
        workflow.add_edge("finalize", END)

        return workflow.compile()

    # ── Nodes ───────────────────────────────────────────────
    async def _transcribe_node(self, state: GenerationState) -> dict:
        request_id, source_url = state["request_id"], state["source_url"]
        await self._engine.apply_transition(
            request_id, {RequestStatus.QUEUED}, RequestStatus.TRANSCRIBING
        )

        transcript = ""
        try:
            transcript = await self._transcripts.fetch(source_url)
        except Exception as e:
            logger.warning("transcript_fetch_failed", source_url=source_url, error=str(e))

        title = author = None
        try:
            metadata = await self._metadata.fetch(source_url)
            title, author = metadata.title, metadata.author
        except Exception as e:
            logger.warning("metadata_fetch_failed", source_url=source_url, error=str(e))

        if not transcript and title is None:
            await self._engine.fail(request_id, "No transcript or source metadata available")
            return {"failed": True, "current_step": "failed"}

        return {
            "transcript": transcript,
            "title": title,
            "author": author,
            "current_step": "transcribed",
        }

    async def _start_generation_node(self, state: GenerationState) -> dict:
        def _store_signal(record: ContentRequest, now: datetime) -> ContentRequest:
            return record.model_copy(
                update={
                    "transcript": state.get("transcript") or None,
                    "title": state.get("title"),
                    "author": state.get("author"),
                }
            )

        await self._engine.apply_transition(
            state["request_id"],
            {RequestStatus.TRANSCRIBING},
            RequestStatus.GENERATING,
            _store_signal,
        )
        return {"current_step": "generating"}

    async def _generate_node(self, state: GenerationState) -> dict:
        content = await self._generator.generate(
            state["source_url"],
            transcript=state.get("transcript") or None,
            title=state.get("title"),
            author=state.get("author"),
        )
        return {
            "blog_post": content.blog_post,
            "short_post": content.short_post,
            "professional_post": content.professional_post,
            "current_step": "generated",
        }

    async def _finalize_node(self, state: GenerationState) -> dict:
        def _store_artifacts(record: ContentRequest, now: datetime) -> ContentRequest:
            return record.model_copy(
                update={
                    "blog_post": sanitize_generated_text(state["blog_post"]),
                    "short_post": sanitize_generated_text(state["short_post"]),
                    "professional_post": sanitize_generated_text(state["professional_post"]),
                    "expires_at": now + self._approval_ttl,
                }
            )

        await self._engine.apply_transition(
            state["request_id"],
            {RequestStatus.GENERATING},
            RequestStatus.GENERATED,
            _store_artifacts,
        )
        return {"current_step": "finalized"}


def _route_after_transcribe(state: GenerationState) -> Literal["start_generation", "end"]:
    """Conditional edge: stop when the transcribe node already committed the error state."""
    if state.get("failed"):
        return "end"
    return "start_generation"
