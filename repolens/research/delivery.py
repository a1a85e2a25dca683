"""TrackerDelivery — best-effort comment on the external tracker item.

Runs only for completed workflows that carry an ``external_task_id``.
The whole path is advisory: every outcome, including exceptions, is reported
as a DeliveryResult and logged. Nothing here can change a workflow's status.
"""

from __future__ import annotations

import structlog

from repolens.research.errors import TrackerDeliveryFailure
from repolens.research.models import DeliveryResult
from repolens.research.readiness import ReadinessGate
from repolens.tools.capabilities import COMMENT_TOOL, CapabilityRegistry, find_capability

logger = structlog.get_logger().bind(component="research.delivery")

COMMENT_TEMPLATE = """\
## 🔍 Repository research

**Repository:** `{repository}`
**Question:** {question}

---

{results}

---
_Posted automatically by repolens._
"""


def format_comment(repository: str, question: str, results: str) -> str:
    return COMMENT_TEMPLATE.format(repository=repository, question=question, results=results)


class TrackerDelivery:
    """Posts research results as a comment on a tracker item.

    Args:
        registry:       Capability registry used to look up the comment tool.
        gate:           ReadinessGate used in named-provider mode.
        provider_name:  Tracker provider name (e.g. ``"Linear"``).
        max_attempts:   Readiness polls before giving up.
        interval:       Seconds between readiness polls.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        gate: ReadinessGate | None = None,
        provider_name: str = "Linear",
        max_attempts: int = 10,
        interval: float = 1.0,
    ) -> None:
        self._registry = registry
        self._gate = gate or ReadinessGate(registry)
        self.provider_name = provider_name
        self.max_attempts = max_attempts
        self.interval = interval

    async def post(
        self,
        external_task_id: str,
        repository: str,
        question: str,
        results: str,
    ) -> DeliveryResult:
        """Post the comment. Never raises."""
        try:
            return await self._post(external_task_id, repository, question, results)
        except Exception as exc:
            failure = TrackerDeliveryFailure(str(exc) or type(exc).__name__)
            logger.warning(
                "tracker_delivery_failed",
                task=external_task_id,
                error=str(failure),
                error_type=type(exc).__name__,
            )
            return DeliveryResult(posted=False, reason=str(failure))

    async def _post(
        self,
        external_task_id: str,
        repository: str,
        question: str,
        results: str,
    ) -> DeliveryResult:
        readiness = await self._gate.wait_until_ready(
            required_provider=self.provider_name,
            max_attempts=self.max_attempts,
            interval=self.interval,
        )
        if not readiness.ready:
            logger.warning(
                "tracker_not_ready",
                task=external_task_id,
                provider=self.provider_name,
                reason=readiness.reason,
            )
            return DeliveryResult(posted=False, reason=readiness.reason)

        names = await self._registry.capabilities()
        tool = find_capability(names, COMMENT_TOOL, readiness.provider_id)
        if tool is None:
            raise TrackerDeliveryFailure(
                f"No '{COMMENT_TOOL}' capability exposed by {self.provider_name}"
            )

        body = format_comment(repository, question, results)
        await self._registry.invoke(tool, {"issueId": external_task_id, "body": body})
        logger.info("tracker_comment_posted", task=external_task_id, tool=tool)
        return DeliveryResult(posted=True, reason="comment posted", capability=tool)
