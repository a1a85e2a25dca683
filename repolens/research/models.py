"""Pydantic models for the research pipeline.

ResearchWorkflow — one research job, persisted by WorkflowStore (Redis JSON)
Exploration      — the outcome of investigating one sub-question (ephemeral)
ReadinessResult  — what the ReadinessGate observed before giving up or succeeding
TranscriptEntry  — one role-tagged entry appended to the conversation transcript
DeliveryResult   — outcome of a best-effort tracker comment
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from repolens.utils.clock import now_utc

_REPOSITORY_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)


class ResearchDepth(str, Enum):
    """How many sub-questions a workflow decomposes into."""

    QUICK = "quick"
    MEDIUM = "medium"
    THOROUGH = "thorough"


class ProviderState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    DISCOVERING = "discovering"
    READY = "ready"
    FAILED = "failed"


class ProviderInfo(BaseModel):
    """One entry of the capability-provider registry snapshot."""

    id: str
    name: str
    state: str = ProviderState.CONNECTING.value

    @property
    def is_ready(self) -> bool:
        return self.state == ProviderState.READY.value


class ResearchWorkflow(BaseModel):
    """A single research job tracked from ``pending`` to a terminal state.

    Stored as JSON at ``research:{session}:workflow:{id}`` in Redis and indexed
    by creation time in ``research:{session}:workflows``.
    """

    id: str = Field(
        default_factory=lambda: uuid.uuid4().hex[:12],
        description="Opaque workflow id; also the Shadows task key.",
    )
    status: WorkflowStatus = WorkflowStatus.PENDING
    repository: str = Field(description="Target repository in owner/name form")
    question: str
    depth: ResearchDepth = ResearchDepth.MEDIUM
    external_task_id: str | None = Field(
        default=None,
        description="Tracker item that receives a comment when research completes",
    )
    results: str | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)

    @field_validator("repository")
    @classmethod
    def _check_repository(cls, value: str) -> str:
        value = value.strip()
        if not _REPOSITORY_RE.match(value):
            raise ValueError(f"repository must look like 'owner/name', got {value!r}")
        return value

    @field_validator("question")
    @classmethod
    def _check_question(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("question must not be empty")
        return value

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def owner(self) -> str:
        return self.repository.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.repository.split("/", 1)[1]


class Exploration(BaseModel):
    """Result of the search-then-read investigation of one sub-question."""

    sub_question: str
    success: bool
    summary: str = ""
    files: list[str] = Field(default_factory=list, max_length=10)
    error: str | None = None


class ReadinessResult(BaseModel):
    ready: bool
    reason: str = ""
    attempts: int = 0
    provider_count: int = 0
    provider_id: str | None = None
    provider_name: str | None = None
    last_state: str | None = None


class TranscriptEntry(BaseModel):
    """One entry in the append-only conversation transcript."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: str = "assistant"
    text: str
    workflow_id: str | None = None
    is_error: bool = False
    created_at: datetime = Field(default_factory=now_utc)


class DeliveryResult(BaseModel):
    posted: bool
    reason: str = ""
    capability: str | None = None
