"""
Shared pytest fixtures for unit and integration tests.

Uses FakeListChatModel for deterministic LLM mocking and in-memory fakes for
the transcript, metadata and email collaborators. No API keys or network needed.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from contentforge.agents.nodes.content_gen import ContentGenerator
from contentforge.core.config import Settings
from contentforge.core.errors import UpstreamError
from contentforge.core.security import limiter
from contentforge.services.container import Services, build_services
from contentforge.services.email_service import EmailService
from contentforge.services.state_store import CONTENT_NAMESPACE, MemoryStateStore
from contentforge.services.transcript_service import SourceMetadata

# Rate limiting is exercised manually, never by the suite
limiter.enabled = False

SOURCE_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
USER_EMAIL = "creator@example.com"

VALID_REPLY = json.dumps(
    {
        "blog_post": "# Shipping Faster\n\nThree habits that cut release time in half.",
        "short_post": "Ship small, ship often, measure everything.",
        "professional_post": "- Ship small\n- Review early\n- Automate checks\nWhat works for you?",
    }
)


# ── Fakes ───────────────────────────────────────────────────
class FakeClock:
    """Controllable clock passed to the TransitionEngine."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2025, 1, 15, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> None:
        self.current += delta


class FakeTranscriptService:
    def __init__(self, transcript: str = "Today we talk about shipping software faster.") -> None:
        self.transcript = transcript
        self.calls: list[str] = []

    async def fetch(self, source_url: str) -> str:
        self.calls.append(source_url)
        return self.transcript


class FakeMetadataService:
    def __init__(self, title: str | None = "Shipping Faster", author: str = "Dev Channel") -> None:
        self.title = title
        self.author = author

    async def fetch(self, source_url: str) -> SourceMetadata:
        if self.title is None:
            raise UpstreamError("Metadata lookup failed: 404")
        return SourceMetadata(title=self.title, author=self.author)


class RecordingEmailService(EmailService):
    """Renders the real templates but records messages instead of using SMTP."""

    def __init__(self, settings: Settings, fail: bool = False) -> None:
        super().__init__(settings)
        self.fail = fail
        self.sent: list[dict] = []

    def send(self, to: str, subject: str, html: str) -> None:
        if self.fail:
            raise ConnectionRefusedError("SMTP unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html})


class CountingGenerator(ContentGenerator):
    def __init__(self, settings: Settings, llm) -> None:
        super().__init__(settings, llm=llm)
        self.calls = 0

    async def generate(self, source_url, transcript=None, title=None, author=None):
        self.calls += 1
        return await super().generate(source_url, transcript, title, author)


class InterleavingStore(MemoryStateStore):
    """
    Memory store with hooks for forcing races.

    ``before_cas`` runs once, right before the next content-record write.
    With ``yield_between_calls`` set, every read and write first yields to the
    event loop, so tasks started together all read before any of them writes.
    ``conflicts`` counts rejected content-record writes.
    """

    def __init__(self) -> None:
        super().__init__()
        self.before_cas = None
        self.yield_between_calls = False
        self.conflicts = 0

    async def get(self, namespace, key):
        if self.yield_between_calls:
            await asyncio.sleep(0)
        return await super().get(namespace, key)

    async def compare_and_set(self, namespace, key, value, expected_version):
        if self.yield_between_calls:
            await asyncio.sleep(0)
        if namespace == CONTENT_NAMESPACE and self.before_cas is not None:
            hook, self.before_cas = self.before_cas, None
            await hook()
        written = await super().compare_and_set(namespace, key, value, expected_version)
        if written is None and namespace == CONTENT_NAMESPACE:
            self.conflicts += 1
        return written


# ── Fixtures ────────────────────────────────────────────────
@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="development",
        app_base_url="http://testserver",
        store_backend="memory",
        api_key="test-api-key",
        smtp_host="smtp.test",
        generation_max_attempts=3,
        generation_backoff_base=0.01,
        generation_retry_jitter=False,
        expiry_sweep_enabled=False,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_llm() -> FakeListChatModel:
    """Deterministic mock LLM that returns canned responses."""
    return FakeListChatModel(responses=[VALID_REPLY])


@pytest.fixture
def transcripts() -> FakeTranscriptService:
    return FakeTranscriptService()


@pytest.fixture
def metadata() -> FakeMetadataService:
    return FakeMetadataService()


@pytest.fixture
def mailer(settings: Settings) -> RecordingEmailService:
    return RecordingEmailService(settings)


@pytest.fixture
def store() -> InterleavingStore:
    return InterleavingStore()


@pytest.fixture
def generator(settings: Settings, mock_llm: FakeListChatModel) -> CountingGenerator:
    return CountingGenerator(settings, mock_llm)


@pytest.fixture
async def services(
    settings, store, transcripts, metadata, generator, mailer, clock
) -> Services:
    return await build_services(
        settings,
        store=store,
        transcripts=transcripts,
        metadata=metadata,
        generator=generator,
        mailer=mailer,
        clock=clock,
    )


@pytest.fixture
async def generated(services: Services):
    """A request that went through the pipeline and is waiting for approval to be requested."""
    record = await services.engine.create(SOURCE_URL, USER_EMAIL)
    return await services.pipeline.run(record.request_id)


@pytest.fixture
async def pending(services: Services, generated):
    return await services.approvals.request_notification(generated.request_id)
