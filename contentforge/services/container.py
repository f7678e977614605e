"""
Service container: builds every collaborator and driver once at startup.

Routes receive the container through a FastAPI dependency (api/v1/deps.py),
and tests build their own with fakes. Nothing here is a module-level client.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from contentforge.agents.approval import ApprovalGate
from contentforge.agents.graph import PipelineDriver, build_retry_policy
from contentforge.agents.lifecycle import Clock, TransitionEngine, utcnow
from contentforge.agents.nodes.content_gen import ContentGenerator
from contentforge.agents.publisher import PublishDriver
from contentforge.agents.sweeper import ExpirySweeper
from contentforge.core.config import Settings
from contentforge.core.logging import get_logger
from contentforge.models.database import build_engine, build_sessionmaker, init_models
from contentforge.services.email_service import EmailService
from contentforge.services.state_store import (
    MemoryStateStore,
    RequestIndex,
    SqlStateStore,
    StateStore,
)
from contentforge.services.status_notifier import StatusNotifier
from contentforge.services.transcript_service import MetadataService, TranscriptService

logger = get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    store: StateStore
    notifier: StatusNotifier
    index: RequestIndex
    engine: TransitionEngine
    pipeline: PipelineDriver
    approvals: ApprovalGate
    publisher: PublishDriver
    sweeper: ExpirySweeper
    mailer: EmailService

    async def aclose(self) -> None:
        await self.store.close()


async def create_store(settings: Settings) -> StateStore:
    if settings.store_backend == "memory":
        logger.warning("memory_store_in_use", hint="state is lost on restart")
        return MemoryStateStore()

    engine = build_engine(settings)
    await init_models(engine)
    return SqlStateStore(build_sessionmaker(engine), engine=engine)


async def build_services(
    settings: Settings,
    *,
    store: StateStore | None = None,
    transcripts: TranscriptService | None = None,
    metadata: MetadataService | None = None,
    generator: ContentGenerator | None = None,
    mailer: EmailService | None = None,
    clock: Clock = utcnow,
) -> Services:
    store = store or await create_store(settings)
    notifier = StatusNotifier(store)
    index = RequestIndex(store)
    engine = TransitionEngine(store, notifier, index, clock=clock)
    mailer = mailer or EmailService(settings)

    pipeline = PipelineDriver(
        engine,
        transcripts or TranscriptService(settings),
        metadata or MetadataService(settings),
        generator or ContentGenerator(settings),
        approval_ttl=timedelta(hours=settings.approval_ttl_hours),
        retry_policy=build_retry_policy(settings),
    )

    return Services(
        settings=settings,
        store=store,
        notifier=notifier,
        index=index,
        engine=engine,
        pipeline=pipeline,
        approvals=ApprovalGate(engine, mailer, settings.app_base_url),
        publisher=PublishDriver(engine, mailer, settings.default_publish_handle),
        sweeper=ExpirySweeper(engine, index),
        mailer=mailer,
    )
