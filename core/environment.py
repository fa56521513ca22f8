import logging
import platform
from multiprocessing import shared_memory

import psutil

from config import REQUIRED_RAM_BYTES
from schemas.models import EnvironmentInfo

logger = logging.getLogger(__name__)

def check_shared_memory() -> bool:
    """Checks that a shared-memory block can be created and released on this host."""
    try:
        block = shared_memory.SharedMemory(create=True, size=1024)
    except (OSError, ValueError) as e:
        logger.warning(f"Shared memory unavailable: {e}")
        return False
    try:
        block.close()
        block.unlink()
    except OSError as e:
        logger.warning(f"Could not release shared memory probe: {e}")
    return True

def check_ram_availability() -> dict:
    """
    Checks if there is sufficient RAM available to hold input and output buffers.
    Returns dict with 'sufficient', 'available_gb', 'required_gb'.
    """
    available = psutil.virtual_memory().available
    return {
        "sufficient":   available >= REQUIRED_RAM_BYTES,
        "available_gb": round(available / 1e9, 1),
        "required_gb":  round(REQUIRED_RAM_BYTES / 1e9, 1),
    }

def probe_environment() -> EnvironmentInfo:
    """Collects the capability flags the engine depends on."""
    ram = check_ram_availability()
    info = EnvironmentInfo(
        platform=platform.platform(),
        python_version=platform.python_version(),
        shared_memory=check_shared_memory(),
        sufficient_ram=ram["sufficient"],
        available_ram_gb=ram["available_gb"],
        required_ram_gb=ram["required_gb"],
    )
    if not info.sufficient_ram:
        logger.warning(
            f"Low memory: {info.available_ram_gb} GB available, {info.required_ram_gb} GB recommended"
        )
    return info
