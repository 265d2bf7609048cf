"""
In-memory singleton that tracks background report-generation jobs.

Usage
-----
    from app.services.generation_manager import generation_manager, GenerationJobStatus

    status = GenerationJobStatus(title=..., report_type=...)
    generation_manager.start(status, run_generation_job(status, request, selector, persistence))
    # ... later ...
    current = generation_manager.get_status(status.job_id)
"""
from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
import time
import uuid
from typing import Any, Coroutine, Dict, List, Optional

from app.models.schemas import GenerationRequest
from app.services.fallback import FallbackStrategySelector
from app.services.orchestrator import GenerationRun
from app.services.persistence import PersistenceCoordinator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Job phase enum
# ---------------------------------------------------------------------------

class GenerationJobPhase(str, enum.Enum):
    QUEUED = "queued"
    PLANNING = "planning"
    GENERATING_INDEPENDENT = "generating_independent"
    GENERATING_DEPENDENT = "generating_dependent"
    ASSEMBLING = "assembling"
    SAVING = "saving"
    COMPLETED = "completed"
    FAILED = "failed"


# Orchestrator phases mirrored on the job; its done/failed are not terminal here
_RUN_PHASE_VALUES = {
    GenerationJobPhase.PLANNING.value,
    GenerationJobPhase.GENERATING_INDEPENDENT.value,
    GenerationJobPhase.GENERATING_DEPENDENT.value,
    GenerationJobPhase.ASSEMBLING.value,
}


# ---------------------------------------------------------------------------
# Job status (mutable dataclass shared between task and poller)
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class GenerationJobStatus:
    title: str
    report_type: str
    user_id: Optional[str] = None
    job_id: str = dataclasses.field(default_factory=lambda: uuid.uuid4().hex)
    phase: GenerationJobPhase = GenerationJobPhase.QUEUED
    total_sections: int = 0
    sections_completed: int = 0
    sections_failed: int = 0
    progress: float = 0.0
    report_id: Optional[int] = None
    errors: List[str] = dataclasses.field(default_factory=list)
    started_at: float = dataclasses.field(default_factory=time.monotonic)
    completed_at: Optional[float] = None

    @property
    def elapsed_seconds(self) -> float:
        end = self.completed_at if self.completed_at else time.monotonic()
        return round(end - self.started_at, 2)

    def update_from_run(self, run: GenerationRun) -> None:
        """``on_progress`` callback for the orchestrator."""
        if run.phase.value in _RUN_PHASE_VALUES:
            self.phase = GenerationJobPhase(run.phase.value)
        self.total_sections = run.total_sections
        self.sections_completed = run.sections_completed
        self.sections_failed = run.sections_failed
        self.progress = run.progress()


async def run_generation_job(
    status: GenerationJobStatus,
    request: GenerationRequest,
    selector: FallbackStrategySelector,
    persistence: PersistenceCoordinator,
) -> None:
    """Generate (with fallback) and persist one report, recording progress in *status*."""
    outcome = await selector.select(request, on_progress=status.update_from_run)
    if not outcome.ok:
        status.phase = GenerationJobPhase.FAILED
        status.errors.append(str(outcome.error)[:500])
        logger.error("Generation job %s failed: %s", status.job_id, outcome.error)
        return

    status.phase = GenerationJobPhase.SAVING
    report = await persistence.save(request, outcome.document)

    status.report_id = report.id
    status.progress = 100.0
    status.phase = GenerationJobPhase.COMPLETED
    logger.info(
        "Generation job %s completed: report id=%d strategy=%s in %.2fs",
        status.job_id,
        report.id,
        outcome.strategy,
        status.elapsed_seconds,
    )


# ---------------------------------------------------------------------------
# Generation manager (class-level state, acts as a singleton)
# ---------------------------------------------------------------------------

class GenerationManager:
    """Manages background generation asyncio.Tasks keyed by job id."""

    _tasks: Dict[str, asyncio.Task] = {}
    _status: Dict[str, GenerationJobStatus] = {}

    # Finished statuses stay pollable this long, and at most this many are kept
    STATUS_RETENTION_SECONDS: float = 3600.0
    MAX_STATUSES: int = 500

    @classmethod
    def is_running(cls, job_id: str) -> bool:
        task = cls._tasks.get(job_id)
        return task is not None and not task.done()

    @classmethod
    def running_count(cls) -> int:
        return sum(1 for task in cls._tasks.values() if not task.done())

    @classmethod
    def get_status(cls, job_id: str) -> Optional[GenerationJobStatus]:
        return cls._status.get(job_id)

    @classmethod
    def start(
        cls,
        status: GenerationJobStatus,
        coro: Coroutine[Any, Any, Any],
    ) -> GenerationJobStatus:
        """
        Launch *coro* as the background task for ``status.job_id``.

        *status* is created by the caller so it can be handed to the
        coroutine first; the same object is returned and keeps updating
        while the task runs.
        """
        job_id = status.job_id
        if cls.is_running(job_id):
            raise RuntimeError(f"Generation job {job_id} is already running")

        cls._status[job_id] = status

        async def _wrapper() -> None:
            try:
                await coro
            except asyncio.CancelledError:
                status.errors.append("job cancelled")
                raise
            except Exception as exc:
                logger.error("Generation job %s crashed: %s", job_id, exc, exc_info=True)
                status.phase = GenerationJobPhase.FAILED
                status.errors.append(f"job crash: {str(exc)[:200]}")
            finally:
                status.completed_at = time.monotonic()
                if status.phase not in (GenerationJobPhase.COMPLETED, GenerationJobPhase.FAILED):
                    status.phase = GenerationJobPhase.FAILED

        task = asyncio.create_task(_wrapper())
        cls._tasks[job_id] = task

        # Cleanup reference when done
        task.add_done_callback(lambda _t: cls._cleanup(job_id))

        logger.info(
            "Generation job %s started for %r (%s)", job_id, status.title, status.report_type
        )
        return status

    @classmethod
    async def wait(cls, job_id: str) -> None:
        """Await the job's task if it is still running."""
        task = cls._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)

    @classmethod
    async def cancel_all(cls) -> int:
        """Cancel every running job (application shutdown). Returns how many were cancelled."""
        running = [task for task in cls._tasks.values() if not task.done()]
        for task in running:
            task.cancel()
        if running:
            await asyncio.gather(*running, return_exceptions=True)
            logger.warning("Cancelled %d running generation job(s)", len(running))
        return len(running)

    @classmethod
    def _cleanup(cls, job_id: str) -> None:
        """Remove the task reference; the status stays pollable until pruned."""
        cls._tasks.pop(job_id, None)
        cls._prune()

    @classmethod
    def _prune(cls) -> None:
        """Evict finished statuses past the retention window, then the oldest above the cap."""
        now = time.monotonic()
        finished = sorted(
            (
                (status.completed_at, job_id)
                for job_id, status in cls._status.items()
                if status.completed_at is not None and job_id not in cls._tasks
            ),
        )
        expired = [
            job_id for completed_at, job_id in finished
            if now - completed_at > cls.STATUS_RETENTION_SECONDS
        ]
        overflow = len(cls._status) - len(expired) - cls.MAX_STATUSES
        if overflow > 0:
            expired += [job_id for _, job_id in finished[len(expired):len(expired) + overflow]]

        for job_id in expired:
            cls._status.pop(job_id, None)
        if expired:
            logger.debug("Pruned %d finished generation job status(es)", len(expired))


# Module-level singleton instance
generation_manager = GenerationManager
