import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from core.engine import FFmpegEngine
from core.exceptions import EngineError
from core.media_processor import build_command, input_extension, output_filename
from core.progress import ProgressEvent, ProgressTracker
from schemas.models import Artifact, FailureDiagnostics, FailureKind, Job, JobStatus

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag handed to one conversion."""

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class RunOutcome:
    status: JobStatus
    artifact: Optional[Artifact]              = None
    diagnostics: Optional[FailureDiagnostics] = None


def _failed(message: str, resource: Optional[str] = None) -> RunOutcome:
    return RunOutcome(
        status=JobStatus.FAILED,
        diagnostics=FailureDiagnostics(kind=FailureKind.CONVERSION_FAILED, message=message, resource=resource),
    )

async def _cleanup(engine: FFmpegEngine, *names: str):
    for name in names:
        try:
            await engine.delete_file(name)
        except EngineError:
            # Output may never have been written
            pass

async def run_conversion(
    engine: FFmpegEngine,
    job: Job,
    on_progress: Callable[[float], None],
    token: CancellationToken,
    timeout: Optional[float] = None,
) -> RunOutcome:
    """
    Converts one job on the given engine.

    Returns a completed outcome carrying the artifact, a cancelled outcome, or
    a failed outcome with diagnostics. Workspace entries are deleted on every
    path, and 100 is reported only after the output has been read back.
    """
    if token.cancelled:
        return RunOutcome(status=JobStatus.CANCELLED)

    input_name = f"{job.id}-input{input_extension(job.original_filename)}"
    output_name = f"{job.id}-output.mp4"
    args = build_command(job.profile, input_name, output_name)
    tracker = ProgressTracker(on_progress)

    def handle_progress(event: ProgressEvent):
        if token.cancelled:
            return
        tracker.update(event.fraction)

    def handle_log(message: str):
        logger.debug(f"[ffmpeg {job.id[:8]}] {message}")

    engine.on("progress", handle_progress)
    engine.on("log", handle_log)
    try:
        try:
            source = await asyncio.to_thread(job.source_path.read_bytes)
        except OSError as e:
            return _failed(f"Could not read source file: {e}", resource=str(job.source_path))

        await engine.write_file(input_name, source)
        del source

        logger.info(f"Converting {job.original_filename} ({job.profile.value})")
        if timeout:
            await asyncio.wait_for(engine.exec(args), timeout)
        else:
            await engine.exec(args)

        if token.cancelled:
            logger.info(f"Conversion of {job.original_filename} cancelled; discarding output")
            return RunOutcome(status=JobStatus.CANCELLED)

        data = await engine.read_file(output_name)
    except asyncio.TimeoutError:
        if token.cancelled:
            return RunOutcome(status=JobStatus.CANCELLED)
        return _failed(f"Conversion timed out after {timeout:g} seconds")
    except EngineError as e:
        if token.cancelled:
            return RunOutcome(status=JobStatus.CANCELLED)
        logger.error(f"Conversion of {job.original_filename} failed: {e.message}")
        return _failed(e.message)
    finally:
        engine.off("progress", handle_progress)
        engine.off("log", handle_log)
        await _cleanup(engine, input_name, output_name)

    # Cancel may land while the output is read back or the workspace cleaned
    if token.cancelled:
        logger.info(f"Conversion of {job.original_filename} cancelled; discarding output")
        return RunOutcome(status=JobStatus.CANCELLED)

    tracker.finish()
    logger.info(f"Converted {job.original_filename} ({len(data)} bytes)")
    return RunOutcome(
        status=JobStatus.COMPLETED,
        artifact=Artifact(filename=output_filename(job.original_filename), data=data),
    )
