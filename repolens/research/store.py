"""WorkflowStore — durable record of research workflows.

Storage layout (Redis, one namespace per conversation session):
    research:{session}:workflow:{id}   JSON ResearchWorkflow
    research:{session}:workflows       ZSET id → created_at (listing index)
    research:{session}:log:{id}        LIST progress log ring-buffer (cap 200)

Failure policy:
    - Reads (get / list / get_log) degrade gracefully: logged, return None / [].
    - Writes (create / transition) raise WorkflowStoreError — a lost status
      write would leave a workflow stuck in a non-terminal state.
    - log_entry is advisory and never raises.

Status writes are validated: pending → in_progress → completed | failed.
Anything else raises InvalidTransition.

Dependency injection:
    Pass ``_redis`` to inject a pre-built client in tests. In production leave
    it None — the store connects lazily.
"""

from __future__ import annotations

import redis.asyncio as aioredis
import structlog

from repolens.research.errors import InvalidTransition, WorkflowStoreError
from repolens.research.models import ResearchDepth, ResearchWorkflow, WorkflowStatus
from repolens.utils.clock import hms, now_utc

logger = structlog.get_logger().bind(component="research.store")

# Max log entries kept in the ring buffer per workflow
_LOG_CAP = 200

_ALLOWED_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.PENDING: frozenset({WorkflowStatus.IN_PROGRESS}),
    WorkflowStatus.IN_PROGRESS: frozenset({WorkflowStatus.COMPLETED, WorkflowStatus.FAILED}),
    WorkflowStatus.COMPLETED: frozenset(),
    WorkflowStatus.FAILED: frozenset(),
}


class WorkflowStore:
    """Read/write interface for one session's research workflows.

    Args:
        redis_url:  Redis connection string (defaults to settings).
        session_id: Owning conversation session (defaults to settings).
        _redis:     Pre-built ``redis.asyncio.Redis`` (inject for tests).
    """

    def __init__(
        self,
        redis_url: str | None = None,
        session_id: str | None = None,
        *,
        _redis=None,
    ) -> None:
        if (redis_url is None and _redis is None) or session_id is None:
            from repolens.config import settings
            redis_url = redis_url or settings.redis_url
            session_id = session_id or settings.session_id

        self._redis_url = redis_url
        self.session_id = session_id
        self._redis_client = _redis

    # ── Keys ──────────────────────────────────────────────────────────────

    def _workflow_key(self, workflow_id: str) -> str:
        return f"research:{self.session_id}:workflow:{workflow_id}"

    def _index_key(self) -> str:
        return f"research:{self.session_id}:workflows"

    def _log_key(self, workflow_id: str) -> str:
        return f"research:{self.session_id}:log:{workflow_id}"

    # ── Redis helper ──────────────────────────────────────────────────────

    async def _redis(self):
        """Return a live redis.asyncio.Redis connection (cached)."""
        if self._redis_client is None:
            try:
                self._redis_client = aioredis.from_url(
                    self._redis_url, decode_responses=True
                )
            except Exception as exc:
                logger.warning("workflow_store_redis_connect_failed", error=str(exc))
                return None
        return self._redis_client

    async def _require_redis(self):
        r = await self._redis()
        if r is None:
            raise WorkflowStoreError("workflow store unavailable (Redis not reachable)")
        return r

    async def _save(self, workflow: ResearchWorkflow, *, index: bool = False) -> None:
        r = await self._require_redis()
        try:
            async with r.pipeline() as pipe:
                pipe.set(self._workflow_key(workflow.id), workflow.model_dump_json())
                if index:
                    pipe.zadd(self._index_key(), {workflow.id: workflow.created_at.timestamp()})
                await pipe.execute()
        except Exception as exc:
            logger.error("workflow_save_failed", workflow_id=workflow.id, error=str(exc))
            raise WorkflowStoreError(f"could not save workflow {workflow.id}: {exc}") from exc

    # ── Workflow records ──────────────────────────────────────────────────

    async def create(
        self,
        repository: str,
        question: str,
        depth: ResearchDepth | str = ResearchDepth.MEDIUM,
        external_task_id: str | None = None,
    ) -> str:
        """Persist a new ``pending`` workflow and return its id."""
        workflow = ResearchWorkflow(
            repository=repository,
            question=question,
            depth=ResearchDepth(depth),
            external_task_id=external_task_id or None,
        )
        await self._save(workflow, index=True)
        logger.info(
            "workflow_created",
            workflow_id=workflow.id,
            repository=workflow.repository,
            depth=workflow.depth.value,
        )
        return workflow.id

    async def get(self, workflow_id: str) -> ResearchWorkflow | None:
        """Retrieve a workflow record, or None if absent / unreadable."""
        r = await self._redis()
        if r is None:
            return None
        try:
            raw = await r.get(self._workflow_key(workflow_id))
            if raw is None:
                return None
            return ResearchWorkflow.model_validate_json(raw)
        except Exception as exc:
            logger.warning("workflow_get_failed", workflow_id=workflow_id, error=str(exc))
            return None

    async def list(self, limit: int = 20) -> list[ResearchWorkflow]:
        """Most recent workflows first, at most *limit*."""
        r = await self._redis()
        if r is None or limit <= 0:
            return []
        try:
            ids = await r.zrevrange(self._index_key(), 0, limit - 1)
            workflows: list[ResearchWorkflow] = []
            for workflow_id in ids:
                workflow = await self.get(workflow_id)
                if workflow:
                    workflows.append(workflow)
            return workflows
        except Exception as exc:
            logger.warning("workflow_list_failed", error=str(exc))
            return []

    async def transition(
        self,
        workflow_id: str,
        status: WorkflowStatus | str,
        *,
        results: str | None = None,
        error: str | None = None,
    ) -> ResearchWorkflow:
        """Move a workflow to *status*, enforcing monotonic order.

        ``completed`` requires *results*; ``failed`` requires *error*. The
        other field is always cleared so terminal records carry exactly one.
        """
        target = WorkflowStatus(status)
        workflow = await self.get(workflow_id)
        if workflow is None:
            raise WorkflowStoreError(f"workflow {workflow_id} not found")

        if target not in _ALLOWED_TRANSITIONS[workflow.status]:
            raise InvalidTransition(
                f"workflow {workflow_id}: {workflow.status.value} → {target.value} not allowed"
            )
        if target is WorkflowStatus.COMPLETED and results is None:
            raise InvalidTransition("completed workflows need results")
        if target is WorkflowStatus.FAILED and error is None:
            raise InvalidTransition("failed workflows need an error message")

        workflow.status = target
        workflow.results = results if target is WorkflowStatus.COMPLETED else None
        workflow.error = error if target is WorkflowStatus.FAILED else None
        workflow.updated_at = now_utc()
        await self._save(workflow)
        logger.info("workflow_status_updated", workflow_id=workflow_id, status=target.value)
        return workflow

    # ── Progress log ring buffer (Redis LIST) ─────────────────────────────

    async def log_entry(self, workflow_id: str, message: str) -> None:
        """Append a timestamped line to the workflow's progress log (capped)."""
        r = await self._redis()
        if r is None:
            return
        try:
            key = self._log_key(workflow_id)
            async with r.pipeline() as pipe:
                pipe.rpush(key, f"[{hms()}] {message}")
                pipe.ltrim(key, -_LOG_CAP, -1)
                await pipe.execute()
        except Exception as exc:
            logger.warning("workflow_log_failed", workflow_id=workflow_id, error=str(exc))

    async def get_log(self, workflow_id: str, n: int = 50) -> list[str]:
        """Return the last *n* log entries (newest last)."""
        r = await self._redis()
        if r is None:
            return []
        try:
            return list(await r.lrange(self._log_key(workflow_id), -n, -1))
        except Exception as exc:
            logger.warning("workflow_get_log_failed", workflow_id=workflow_id, error=str(exc))
            return []

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis_client:
            try:
                await self._redis_client.aclose()
            except Exception as exc:
                logger.debug("workflow_store_close_failed", error=str(exc))
            self._redis_client = None
