"""WorkflowEngine — turns one question into a durable background research job.

State machine (persisted by WorkflowStore, single writer):

    pending ──execute──▶ in_progress ──▶ completed
                                    └──▶ failed

Run pipeline:
    ReadinessGate (any provider ready)
      → decompose(question, depth)
      → explore() per sub-question, concurrently, behind a semaphore
      → fan-in barrier (asyncio.gather) → keep successful explorations
      → synthesize() → minimum-length check

Delivery, strictly after the terminal status write:
    - exactly one transcript entry (answer or ❌ error)
    - completed + external_task_id → TrackerDelivery.post (best-effort)
    - a ``completed`` write that fails falls back to ``failed``
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, Protocol

import structlog

from repolens.research.decomposer import decompose
from repolens.research.delivery import TrackerDelivery
from repolens.research.errors import (
    AllExplorationsFailed,
    InsufficientResult,
    ProviderNotReady,
    ProviderUnavailable,
    ResearchTimeout,
    WorkflowStoreError,
)
from repolens.research.explorer import explore
from repolens.research.models import (
    Exploration,
    ResearchDepth,
    ResearchWorkflow,
    TranscriptEntry,
    WorkflowStatus,
)
from repolens.research.readiness import ReadinessGate
from repolens.research.store import WorkflowStore
from repolens.research.synthesizer import MIN_RESULT_CHARS, synthesize
from repolens.research.transcript import Transcript
from repolens.tools.capabilities import CapabilityRegistry, CapabilitySet, resolve_capabilities
from repolens.utils import workflow_context

logger = structlog.get_logger().bind(component="research.engine")

# Handler name the scheduler resolves to the background task.
RUN_HANDLER = "run_research_workflow"


class Scheduler(Protocol):
    """Fire-once deferred invocation of a named handler."""

    async def schedule(self, delay: timedelta, handler_name: str, payload: dict[str, Any]) -> None: ...


def format_answer(workflow: ResearchWorkflow, results: str) -> str:
    return (
        f"**Research complete for `{workflow.repository}`**\n\n"
        f"**Question:** {workflow.question}\n\n"
        f"{results}"
    )


def format_failure(workflow: ResearchWorkflow, message: str) -> str:
    return f"❌ Research on `{workflow.repository}` failed: {message}"


class WorkflowEngine:
    """Creates, schedules and runs research workflows for one session.

    Args:
        store:       WorkflowStore owned exclusively by this engine.
        registry:    Capability registry (providers + tools).
        transcript:  Conversation transcript receiving the outcome.
        scheduler:   Deferred-execution scheduler (needed by start_research).
        gate:        ReadinessGate (defaults to one over *registry*).
        delivery:    TrackerDelivery (defaults to one over *registry*).
    """

    def __init__(
        self,
        store: WorkflowStore,
        registry: CapabilityRegistry,
        transcript: Transcript,
        scheduler: Scheduler | None = None,
        *,
        gate: ReadinessGate | None = None,
        delivery: TrackerDelivery | None = None,
        readiness_attempts: int | None = None,
        readiness_interval: float | None = None,
        exploration_concurrency: int | None = None,
        run_timeout: float | None = None,
        code_provider: str | None = None,
    ) -> None:
        from repolens.config import settings

        self._store = store
        self._registry = registry
        self._transcript = transcript
        self._scheduler = scheduler
        self._gate = gate or ReadinessGate(registry)
        self._delivery = delivery or TrackerDelivery(
            registry,
            self._gate,
            provider_name=settings.tracker_provider,
            max_attempts=settings.tracker_readiness_attempts,
            interval=settings.tracker_readiness_interval,
        )
        self.readiness_attempts = readiness_attempts or settings.readiness_attempts
        self.readiness_interval = (
            readiness_interval if readiness_interval is not None else settings.readiness_interval
        )
        self.exploration_concurrency = exploration_concurrency or settings.exploration_concurrency
        self.run_timeout = run_timeout or settings.research_run_timeout
        self.code_provider = code_provider or settings.code_provider

    # ── Public surface ────────────────────────────────────────────────────

    async def start_research(
        self,
        repository: str,
        question: str,
        depth: ResearchDepth | str = ResearchDepth.MEDIUM,
        external_task_id: str | None = None,
    ) -> str:
        """Create a ``pending`` workflow and schedule its run immediately."""
        if self._scheduler is None:
            raise RuntimeError("WorkflowEngine.start_research needs a scheduler")

        workflow_id = await self._store.create(repository, question, depth, external_task_id)
        await self._store.log_entry(workflow_id, f"📝 Queued: {question[:100]}")
        await self._scheduler.schedule(
            timedelta(0),
            RUN_HANDLER,
            {"workflow_id": workflow_id, "session_id": self._store.session_id},
        )
        logger.info("workflow_scheduled", workflow_id=workflow_id, repository=repository)
        return workflow_id

    async def get(self, workflow_id: str) -> ResearchWorkflow | None:
        return await self._store.get(workflow_id)

    async def list(self, limit: int = 20) -> list[ResearchWorkflow]:
        return await self._store.list(limit)

    async def execute(self, workflow_id: str) -> ResearchWorkflow | None:
        """Run a scheduled workflow to a terminal state.

        Returns the final record, or None when the id is unknown. A workflow
        that has already left ``pending`` is returned untouched.
        """
        with workflow_context(workflow_id, self._store.session_id):
            return await self._execute(workflow_id)

    async def _execute(self, workflow_id: str) -> ResearchWorkflow | None:
        workflow = await self._store.get(workflow_id)
        if workflow is None:
            logger.warning("workflow_not_found", workflow_id=workflow_id)
            return None
        if workflow.status is not WorkflowStatus.PENDING:
            logger.warning(
                "workflow_already_started",
                workflow_id=workflow_id,
                status=workflow.status.value,
            )
            return workflow

        workflow = await self._store.transition(workflow_id, WorkflowStatus.IN_PROGRESS)
        await self._store.log_entry(
            workflow_id,
            f"⚙ Research start — {workflow.repository}  depth={workflow.depth.value}",
        )
        logger.info(
            "workflow_started",
            workflow_id=workflow_id,
            repository=workflow.repository,
            depth=workflow.depth.value,
        )

        deadline = asyncio.timeout(self.run_timeout)
        try:
            async with deadline:
                results = await self._run(workflow)
        except Exception as exc:
            if isinstance(exc, TimeoutError) and deadline.expired():
                exc = ResearchTimeout(f"Research timed out after {self.run_timeout:g}s")
            return await self._fail(workflow, exc)

        return await self._complete(workflow, results)

    # ── Pipeline ──────────────────────────────────────────────────────────

    async def _run(self, workflow: ResearchWorkflow) -> str:
        readiness = await self._gate.wait_until_ready(
            max_attempts=self.readiness_attempts,
            interval=self.readiness_interval,
        )
        if not readiness.ready:
            if readiness.provider_count == 0:
                raise ProviderUnavailable(f"No capability providers available: {readiness.reason}")
            raise ProviderNotReady(f"Capability providers not ready: {readiness.reason}")
        await self._store.log_entry(workflow.id, f"🔌 {readiness.reason}")

        provider_id = None
        if (readiness.provider_name or "").lower() == self.code_provider.lower():
            provider_id = readiness.provider_id
        capabilities = await resolve_capabilities(self._registry, workflow.repository, provider_id)
        sub_questions = decompose(workflow.question, workflow.depth)
        await self._store.log_entry(workflow.id, f"🗂 {len(sub_questions)} sub-question(s)")

        explorations = await self._explore_all(workflow, sub_questions, capabilities)
        successful = [e for e in explorations if e.success]
        await self._store.log_entry(
            workflow.id,
            f"🔎 {len(successful)}/{len(explorations)} exploration(s) succeeded",
        )
        if not successful:
            errors = "; ".join(e.error or "unknown error" for e in explorations[:3])
            raise AllExplorationsFailed(
                f"All {len(explorations)} explorations failed: {errors}"
            )

        synthesis = synthesize(workflow.question, successful)
        if len(synthesis) < MIN_RESULT_CHARS:
            raise InsufficientResult(
                f"Synthesized result too short ({len(synthesis)} chars, "
                f"minimum {MIN_RESULT_CHARS})"
            )
        return synthesis

    async def _explore_all(
        self,
        workflow: ResearchWorkflow,
        sub_questions: list[str],
        capabilities: CapabilitySet,
    ) -> list[Exploration]:
        semaphore = asyncio.Semaphore(self.exploration_concurrency)

        async def _bounded(sub_question: str) -> Exploration:
            async with semaphore:
                return await explore(workflow.repository, sub_question, capabilities)

        return list(await asyncio.gather(*(_bounded(sq) for sq in sub_questions)))

    # ── Terminal transitions ──────────────────────────────────────────────

    async def _append_transcript(self, entry: TranscriptEntry) -> bool:
        """Append the outcome entry; the workflow is already terminal, so failures are logged."""
        try:
            await self._transcript.append(entry)
        except WorkflowStoreError as exc:
            logger.error("transcript_append_failed", workflow_id=entry.workflow_id, error=str(exc))
            await self._store.log_entry(entry.workflow_id, f"⚠ Transcript append failed: {exc}")
            return False
        return True

    async def _complete(self, workflow: ResearchWorkflow, results: str) -> ResearchWorkflow:
        try:
            completed = await self._store.transition(
                workflow.id, WorkflowStatus.COMPLETED, results=results
            )
        except WorkflowStoreError as exc:
            logger.error("workflow_complete_write_failed", workflow_id=workflow.id, error=str(exc))
            return await self._fail(workflow, exc)

        await self._store.log_entry(workflow.id, f"✅ Complete — {len(results)} chars")
        await self._append_transcript(
            TranscriptEntry(text=format_answer(completed, results), workflow_id=workflow.id)
        )
        logger.info("workflow_completed", workflow_id=workflow.id, chars=len(results))

        if completed.external_task_id:
            delivery = await self._delivery.post(
                completed.external_task_id,
                completed.repository,
                completed.question,
                results,
            )
            await self._store.log_entry(
                workflow.id,
                f"📮 Tracker {'comment posted' if delivery.posted else 'skipped'}: {delivery.reason}",
            )
        return completed

    async def _fail(self, workflow: ResearchWorkflow, exc: Exception) -> ResearchWorkflow:
        message = str(exc) or type(exc).__name__
        failed = await self._store.transition(workflow.id, WorkflowStatus.FAILED, error=message)
        await self._store.log_entry(workflow.id, f"⚠ Failed — {message[:120]}")
        await self._append_transcript(
            TranscriptEntry(
                text=format_failure(failed, message),
                workflow_id=workflow.id,
                is_error=True,
            )
        )
        logger.warning(
            "workflow_failed",
            workflow_id=workflow.id,
            error=message,
            error_type=type(exc).__name__,
        )
        return failed
