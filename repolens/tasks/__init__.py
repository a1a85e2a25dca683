"""repolens background task registry.

Tasks registered here are picked up by the Shadows Worker subprocess launched
via ``repolens worker`` (or ``python -m repolens.tasks.worker_process``).

Public surface
--------------
``repolens_tasks``  — TaskCollection consumed by Worker.run(tasks=[...])
"""

from .research import ShadowsScheduler, run_research_workflow

# Task collection path consumed by shadows Worker:
#   shadow.register_collection("repolens.tasks:repolens_tasks")
repolens_tasks = [run_research_workflow]

__all__ = ["run_research_workflow", "ShadowsScheduler", "repolens_tasks"]
