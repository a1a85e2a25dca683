"""run_research_workflow — Shadows fire-once task that executes a workflow.

Each execution:
  1. Builds the session's WorkflowStore, Transcript and capability registry.
  2. Hands the workflow id to WorkflowEngine.execute(), which drives the
     record from ``pending`` to ``completed`` / ``failed`` and appends the
     transcript entry.
  3. Closes every connection it opened.

Scheduling:
    WorkflowEngine.start_research() calls ShadowsScheduler.schedule() with a
    zero delay. The Shadows key is the workflow id, so a workflow is queued at
    most once; the engine additionally refuses to re-run a workflow that has
    already left ``pending``.

Serialization safety:
    All repolens imports are deferred inside the function body so cloudpickle
    serializes only the code object.

Usage::

    from shadows import Shadow
    async with Shadow(name="repolens", url=redis_url) as shadow:
        shadow.register(run_research_workflow)
        engine = WorkflowEngine(store, registry, transcript, ShadowsScheduler(shadow))
        await engine.start_research("owner/repo", "How is auth handled?")
"""

from __future__ import annotations

import logging
from datetime import timedelta
from logging import Logger, LoggerAdapter
from typing import Any

from shadows.dependencies import TaskLogger

from repolens.utils.clock import now_utc

logger = logging.getLogger(__name__)


async def run_research_workflow(
    workflow_id: str,
    session_id: str | None = None,
    log: LoggerAdapter[Logger] = TaskLogger(),
) -> None:
    """Execute one research workflow to a terminal state.

    Args:
        workflow_id: Id returned by WorkflowEngine.start_research (Shadows key).
        session_id:  Conversation session that owns the workflow.
        log:         Injected by Shadows — context-aware task logger.
    """
    # ── All imports deferred for cloudpickle safety ───────────────────────
    from repolens.config import settings
    from repolens.research.engine import WorkflowEngine
    from repolens.research.store import WorkflowStore
    from repolens.research.transcript import Transcript
    from repolens.tools.capabilities import HttpCapabilityRegistry

    session = session_id or settings.session_id
    store = WorkflowStore(settings.redis_url, session)
    transcript = Transcript(settings.redis_url, session)
    registry = HttpCapabilityRegistry()

    log.info("run_research_workflow: start — workflow=%s session=%s", workflow_id, session)
    try:
        engine = WorkflowEngine(store, registry, transcript)
        workflow = await engine.execute(workflow_id)
        if workflow is None:
            log.warning("run_research_workflow: unknown workflow %s", workflow_id)
        else:
            log.info(
                "run_research_workflow: done — workflow=%s status=%s",
                workflow_id,
                workflow.status.value,
            )
    finally:
        await registry.close()
        await transcript.close()
        await store.close()


class ShadowsScheduler:
    """Scheduler backed by a Shadows instance.

    Handler names map to registered task functions; the payload becomes the
    task's keyword arguments and its ``workflow_id`` (when present) the
    Shadows key, giving fire-once semantics per workflow.
    """

    def __init__(self, shadow, handlers: dict[str, Any] | None = None) -> None:
        self._shadow = shadow
        self._handlers = handlers or {"run_research_workflow": run_research_workflow}

    async def schedule(self, delay: timedelta, handler_name: str, payload: dict[str, Any]) -> None:
        try:
            handler = self._handlers[handler_name]
        except KeyError:
            raise ValueError(f"unknown handler {handler_name!r}") from None

        when = now_utc() + delay
        key = payload.get("workflow_id")
        await self._shadow.add(handler, when=when, key=key)(**payload)
        logger.info("scheduled %s key=%s at %s", handler_name, key, when.isoformat())
