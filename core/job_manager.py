import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, Callable, Awaitable, List, Optional

from schemas.models import (
    ConversionProfile,
    FailureDiagnostics,
    FailureKind,
    Job,
    JobStatus,
)
from core.conversion_runner import CancellationToken, RunOutcome, run_conversion
from core.engine_loader import EngineLoader
from core.exceptions import EngineNotReady

logger = logging.getLogger(__name__)

class JobManager:
    def __init__(self, loader: EngineLoader, timeout: Optional[float] = None):
        self.loader = loader
        self.timeout = timeout
        self.jobs: Dict[str, Job] = {}   # Insertion order is enqueue order
        self.event_callbacks: List[Callable[[dict], Awaitable[None]]] = []
        self._job_diagnostics: Optional[FailureDiagnostics] = None

        self._events: asyncio.Queue = asyncio.Queue()
        self._dispatch_task: Optional[asyncio.Task] = None
        self._pass_task: Optional[asyncio.Task] = None
        self._current_job: Optional[Job] = None
        self._current_token: Optional[CancellationToken] = None

    def add_event_callback(self, callback: Callable[[dict], Awaitable[None]]):
        self.event_callbacks.append(callback)

    async def emit(self, event_data: dict):
        for cb in self.event_callbacks:
            try:
                await cb(event_data)
            except Exception as e:
                logger.error(f"Error in event callback: {e}")

    def _publish(self, event_data: dict):
        # Nothing drains the queue until startup(), and nobody listens without callbacks
        if self._dispatch_task is None or not self.event_callbacks:
            return
        self._events.put_nowait(event_data)

    async def startup(self):
        """Starts the background task that forwards events to callbacks."""
        if self._dispatch_task is None:
            self._dispatch_task = asyncio.create_task(self._dispatch_events())

    async def shutdown(self):
        if self._current_token:
            self._current_token.cancel()
        if self._pass_task:
            self._pass_task.cancel()
        if self._dispatch_task:
            self._dispatch_task.cancel()
            self._dispatch_task = None
        for job in self.jobs.values():
            self._release_source(job)
        await self.loader.close()

    async def _dispatch_events(self):
        while True:
            try:
                event = await self._events.get()
                await self.emit(event)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error dispatching job event: {e}")

    # -- Queue contents --

    def enqueue(
        self,
        path: Path,
        profile: ConversionProfile,
        filename: Optional[str] = None,
        owns_source: bool = False,
    ) -> str:
        """
        Queues a file for conversion. With owns_source the file is a private
        copy that is deleted once the job leaves the queue.
        """
        path = Path(path)
        job = Job(
            original_filename=filename or path.name,
            source_path=path,
            profile=ConversionProfile(profile),
            owns_source=owns_source,
        )
        self.jobs[job.id] = job
        logger.info(f"Queued {job.original_filename} ({job.profile.value}) as {job.id}")
        self._publish({"event": "job_added", "job": job.to_dict()})
        return job.id

    def get_job(self, job_id: str) -> Job | None:
        return self.jobs.get(job_id)

    def list_jobs(self) -> List[Job]:
        return list(self.jobs.values())

    @property
    def last_diagnostics(self) -> Optional[FailureDiagnostics]:
        """Most recent failure, whether it came from the engine loader or a job."""
        candidates = [d for d in (self.loader.diagnostics, self._job_diagnostics) if d]
        return max(candidates, key=lambda d: d.timestamp, default=None)

    def summary(self) -> Dict[str, Any]:
        counts = {status.value: 0 for status in JobStatus}
        for job in self.jobs.values():
            counts[job.status.value] += 1
        counts["total"] = len(self.jobs)
        counts["processing"] = self.is_processing
        return counts

    def remove_job(self, job_id: str) -> bool:
        """
        Removes a job. A running job is only flagged and disappears once it
        reaches a terminal status; in that case False is returned.
        """
        job = self.jobs.get(job_id)
        if not job:
            return False
        if job.status == JobStatus.RUNNING:
            job._remove_when_done = True
            logger.info(f"Job {job_id} is running; removal deferred until it finishes")
            return False
        self._discard(job)
        return True

    def clear_completed(self) -> int:
        completed = [jid for jid, job in self.jobs.items() if job.status == JobStatus.COMPLETED]
        for jid in completed:
            self._discard(self.jobs[jid])
        if completed:
            logger.info(f"Cleared {len(completed)} completed job(s)")
        return len(completed)

    def retry_job(self, job_id: str) -> str:
        """Re-queues a failed or cancelled job as a new job with the same source."""
        job = self.jobs.get(job_id)
        if not job:
            raise KeyError(job_id)
        if job.status not in (JobStatus.FAILED, JobStatus.CANCELLED):
            raise ValueError(f"Only failed or cancelled jobs can be retried (status: {job.status.value})")
        # The new job inherits the private copy so removing the old one keeps it
        owns_source, job.owns_source = job.owns_source, False
        return self.enqueue(job.source_path, job.profile, filename=job.original_filename, owns_source=owns_source)

    def _discard(self, job: Job):
        del self.jobs[job.id]
        self._release_source(job)
        self._publish({"event": "job_removed", "job_id": job.id})

    @staticmethod
    def _release_source(job: Job):
        if not job.owns_source or job.source_path is None:
            return
        try:
            job.source_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not delete uploaded source {job.source_path}: {e}")
        job.owns_source = False

    # -- Processing --

    @property
    def is_processing(self) -> bool:
        return self._pass_task is not None and not self._pass_task.done()

    def start_queue(self) -> bool:
        """
        Starts one processing pass over the jobs queued right now.
        Returns False without doing anything if a pass is already running.
        """
        if self.is_processing:
            logger.info("Queue pass already running; ignoring start request")
            return False
        snapshot = [job for job in self.jobs.values() if job.status == JobStatus.QUEUED]
        self._pass_task = asyncio.create_task(self._process_jobs(snapshot))
        return True

    async def wait_idle(self):
        if self._pass_task:
            await asyncio.shield(self._pass_task)

    def cancel_current(self) -> bool:
        if self._current_job and self._current_token:
            return self.cancel_job(self._current_job.id)
        return False

    def cancel_job(self, job_id: str) -> bool:
        job = self.jobs.get(job_id)
        if not job or job.is_terminal:
            return False
        if job.status == JobStatus.QUEUED:
            self._finish(job, RunOutcome(status=JobStatus.CANCELLED))
            return True
        if job is self._current_job and self._current_token:
            logger.info(f"Cancellation requested for {job.original_filename}")
            self._current_token.cancel()
            return True
        return False

    async def _process_jobs(self, snapshot: List[Job]):
        """Runs the snapshot one job at a time against the shared engine."""
        logger.info(f"Processing {len(snapshot)} queued job(s)")
        self._publish({"event": "queue_started", "count": len(snapshot)})
        for index, job in enumerate(snapshot):
            # Removed or cancelled while waiting
            if job.id not in self.jobs or job.status != JobStatus.QUEUED:
                continue

            try:
                engine = self.loader.require_ready()
            except EngineNotReady as e:
                self._fail_not_ready(snapshot[index:], e.message)
                break

            await self._run_job(job, engine)

        self._publish({"event": "queue_finished", "summary": self.summary()})
        logger.info("Queue pass finished")

    async def _run_job(self, job: Job, engine):
        token = CancellationToken()
        self._current_job = job
        self._current_token = token
        job.status = JobStatus.RUNNING
        job.progress = 0.0
        job.started_at = datetime.now(timezone.utc)
        self._publish({"event": "status_change", "job_id": job.id, "status": job.status.value})

        def on_progress(percent: float):
            job.progress = percent
            self._publish({"event": "progress", "job_id": job.id, "progress": percent})

        try:
            outcome = await run_conversion(engine, job, on_progress, token, timeout=self.timeout)
        except Exception as e:
            logger.exception(f"Unexpected error converting {job.original_filename}: {e}")
            outcome = RunOutcome(
                status=JobStatus.FAILED,
                diagnostics=FailureDiagnostics(kind=FailureKind.CONVERSION_FAILED, message=str(e)),
            )
        finally:
            self._current_job = None
            self._current_token = None

        self._finish(job, outcome)

    def _fail_not_ready(self, jobs: List[Job], detail: str):
        loader_diag = self.loader.diagnostics
        message = "Engine not ready"
        if loader_diag:
            message += f": {loader_diag.message}"
        else:
            message += f" ({detail})"
        for job in jobs:
            if job.id not in self.jobs or job.status != JobStatus.QUEUED:
                continue
            self._finish(job, RunOutcome(
                status=JobStatus.FAILED,
                diagnostics=FailureDiagnostics(
                    kind=FailureKind.ENGINE_NOT_READY,
                    message=message,
                    environment=self.loader.environment,
                ),
            ))

    def _finish(self, job: Job, outcome: RunOutcome):
        job.status = outcome.status
        job.finished_at = datetime.now(timezone.utc)
        if outcome.status == JobStatus.COMPLETED:
            job.artifact = outcome.artifact
            job.progress = 100.0
        elif outcome.status == JobStatus.FAILED:
            job.diagnostics = outcome.diagnostics
            self._job_diagnostics = outcome.diagnostics
            logger.error(f"Job {job.original_filename} failed: {outcome.diagnostics.message}")

        event = {"event": "status_change", "job_id": job.id, "status": job.status.value}
        if job.diagnostics:
            event["error_message"] = job.diagnostics.message
        self._publish(event)

        if job._remove_when_done:
            self.remove_job(job.id)
