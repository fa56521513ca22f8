from core.engine_loader import EngineLoader
from core.job_manager import JobManager
from config import JOB_TIMEOUT
from typing import Optional

engine_loader: Optional[EngineLoader] = None
job_manager: Optional[JobManager] = None

def init_globals():
    """Creates the process-wide engine loader and the queue that shares it."""
    global engine_loader, job_manager
    if engine_loader is None:
        engine_loader = EngineLoader()
    job_manager = JobManager(engine_loader, timeout=JOB_TIMEOUT)
