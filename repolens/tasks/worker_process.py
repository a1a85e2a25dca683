"""repolens background worker — executes scheduled research workflows.

``repolens research start`` only writes a ``pending`` record and enqueues
``run_research_workflow`` in Shadows; nothing runs until a worker picks the
task up. Start one per Redis namespace::

    repolens worker
    python -m repolens.tasks.worker_process --redis-url redis://localhost:6379/0

The PID is written to ``~/.repolens/worker.pid`` for ``repolens worker --status``.
SIGINT / SIGTERM stop the worker after in-flight cancellation; a workflow cut
off mid-run stays ``in_progress`` (there is no redelivery across restarts).
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import os
import signal
from pathlib import Path

import structlog

logger = structlog.get_logger().bind(component="worker")

PID_FILE = Path.home() / ".repolens" / "worker.pid"

TASK_COLLECTION = "repolens.tasks:repolens_tasks"


def read_pid(pid_file: Path = PID_FILE) -> int | None:
    """PID of the running worker, or None when absent or stale (stale files are removed)."""
    try:
        pid = int(pid_file.read_text().strip())
    except (FileNotFoundError, ValueError):
        return None
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        pid_file.unlink(missing_ok=True)
        return None
    except PermissionError:
        # Alive, owned by another user.
        pass
    return pid


async def run_worker(shadows_name: str, redis_url: str, pid_file: Path = PID_FILE) -> None:
    """Serve ``repolens_tasks`` until a stop signal arrives."""
    from shadows import Shadow, Worker

    from repolens.config import settings

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    pid_file.parent.mkdir(parents=True, exist_ok=True)
    pid_file.write_text(str(os.getpid()))
    try:
        async with Shadow(name=shadows_name, url=redis_url) as shadow:
            shadow.register_collection(TASK_COLLECTION)
            async with Worker(shadow) as worker:
                logger.info(
                    "worker_ready",
                    pid=os.getpid(),
                    shadows=shadows_name,
                    tasks=sorted(shadow.tasks),
                    registry=settings.registry_url,
                    run_timeout=settings.research_run_timeout,
                    exploration_concurrency=settings.exploration_concurrency,
                )
                serving = asyncio.create_task(worker.run_forever())
                stopping = asyncio.create_task(stop.wait())
                await asyncio.wait({serving, stopping}, return_when=asyncio.FIRST_COMPLETED)
                for task in (serving, stopping):
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task
    finally:
        pid_file.unlink(missing_ok=True)
        logger.info("worker_stopped")


def main(argv: list[str] | None = None) -> None:
    from repolens.config import settings
    from repolens.utils import setup_logging

    parser = argparse.ArgumentParser(description="repolens background worker")
    parser.add_argument("--shadows-name", default=settings.shadows_name, help="Shadows namespace")
    parser.add_argument("--redis-url", default=settings.redis_url, help="Redis connection URL")
    parser.add_argument(
        "--log-level",
        default=settings.log_level.upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    parser.add_argument("--log-format", default=settings.log_format, choices=["console", "json"])
    args = parser.parse_args(argv)

    setup_logging(args.log_level, args.log_format)
    if read_pid() is not None:
        logger.warning("worker_already_running", pid=read_pid())
    asyncio.run(run_worker(args.shadows_name, args.redis_url))


if __name__ == "__main__":
    main()
