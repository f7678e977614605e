"""
Pydantic v2 schemas: the persisted ContentRequest record plus API request/response shapes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from contentforge.models.models import RequestStatus

_EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
_URL_PATTERN = r"(?i)^https?://[^\s/$.?#].[^\s]*$"

ARTIFACT_FIELDS = ("blog_post", "short_post", "professional_post")


# ── Persisted record ────────────────────────────────────────
class PublishHandles(BaseModel):
    """Per-platform account overrides supplied when publishing."""

    devto: str | None = Field(default=None, max_length=100)
    x: str | None = Field(default=None, max_length=100)
    linkedin: str | None = Field(default=None, max_length=100)


class PlatformResult(BaseModel):
    platform: str
    handle: str
    url: str
    published: bool = True
    published_at: datetime


class ContentRequest(BaseModel):
    request_id: str
    user_email: str
    source_url: str
    status: RequestStatus = RequestStatus.QUEUED

    # Source signal and generated artifacts
    transcript: str | None = None
    title: str | None = None
    author: str | None = None
    blog_post: str | None = None
    short_post: str | None = None
    professional_post: str | None = None

    # Publishing
    handles: PublishHandles | None = None
    results: dict[str, PlatformResult] | None = None

    # Milestones
    created_at: datetime
    expires_at: datetime | None = None
    decided_at: datetime | None = None
    published_at: datetime | None = None
    expired_at: datetime | None = None
    error: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    @property
    def has_artifacts(self) -> bool:
        return all(getattr(self, name) for name in ARTIFACT_FIELDS)


class StatusEvent(BaseModel):
    request_id: str
    stage: str
    message: str
    ts: datetime


# ── Generation collaborator output ──────────────────────────
class GeneratedContent(BaseModel):
    blog_post: str = Field(min_length=1)
    short_post: str = Field(min_length=1)
    professional_post: str = Field(min_length=1)

    @field_validator("blog_post", "short_post", "professional_post", mode="before")
    @classmethod
    def strip_text(cls, v: object) -> object:
        return v.strip() if isinstance(v, str) else v


# ── Content creation ────────────────────────────────────────
class CreateContentRequest(BaseModel):
    source_url: str = Field(pattern=_URL_PATTERN, max_length=2000)
    user_email: str = Field(pattern=_EMAIL_PATTERN, max_length=320)


class CreateContentResponse(BaseModel):
    success: bool = True
    request_id: str
    message: str = "Content generation started! Check your email for approval."


class ContentEnvelope(BaseModel):
    success: bool = True
    data: ContentRequest


class StatusEnvelope(BaseModel):
    success: bool = True
    data: StatusEvent | None = None


# ── Approval / publish triggers ─────────────────────────────
class AcceptedResponse(BaseModel):
    success: bool = True
    request_id: str
    status: RequestStatus


class PublishRequest(BaseModel):
    handles: PublishHandles | None = None


DecisionAction = Literal["approve", "reject"]


# ── Health check ────────────────────────────────────────────
class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str = "0.1.0"
    environment: str
    store: str
