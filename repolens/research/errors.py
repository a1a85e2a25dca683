"""Exception taxonomy for research workflows.

Workflow-level errors (ProviderUnavailable, ProviderNotReady,
AllExplorationsFailed, InsufficientResult, ResearchTimeout) are caught once by
WorkflowEngine.execute and turned into a ``failed`` record plus a transcript
entry. ExplorationFailure and TrackerDeliveryFailure never leave the component
that raises them.
"""

from __future__ import annotations


class ResearchError(Exception):
    """Base class for every research pipeline error."""


class ProviderUnavailable(ResearchError):
    """No capability providers are registered at all."""


class ProviderNotReady(ResearchError):
    """Providers exist but none reached ``ready`` within the polling budget."""


class ExplorationFailure(ResearchError):
    """One sub-question could not be explored (absorbed by the explorer)."""


class AllExplorationsFailed(ResearchError):
    """Every exploration of a workflow failed."""


class InsufficientResult(ResearchError):
    """The synthesized answer is too short to be meaningful."""


class ResearchTimeout(ResearchError):
    """The run exceeded its wall-clock ceiling."""


class TrackerDeliveryFailure(ResearchError):
    """Posting the tracker comment failed (logged, never propagated)."""


class WorkflowStoreError(ResearchError):
    """A workflow record could not be written."""


class InvalidTransition(WorkflowStoreError):
    """A status change would move a workflow backwards or skip a state."""
