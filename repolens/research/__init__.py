"""repolens research — asynchronous repository research workflows.

Architecture:
    ResearchWorkflow — one research job (Pydantic model, Redis JSON)
    WorkflowStore    — workflow records + progress log (Redis)
    Transcript       — conversation transcript the outcome is appended to
    WorkflowEngine   — create → schedule → gate → decompose → explore → synthesize
                       (repolens.research.engine)
    TrackerDelivery  — optional comment on the external tracker item

Shadows task:
    repolens.tasks.research.run_research_workflow — fire-once, keyed by
    workflow id, executes WorkflowEngine.execute().

CLI surface (wired in repolens.main):
    repolens research start <owner/name> "<question>" [--depth] [--task]
    repolens research status <id>
    repolens research list
    repolens research log <id>
"""

from .models import Exploration, ResearchDepth, ResearchWorkflow, WorkflowStatus
from .store import WorkflowStore
from .transcript import Transcript

__all__ = [
    "WorkflowStore",
    "Transcript",
    "ResearchWorkflow",
    "ResearchDepth",
    "WorkflowStatus",
    "Exploration",
]
