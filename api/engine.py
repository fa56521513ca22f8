from fastapi import APIRouter

import core.globals
from core.environment import check_ram_availability
from core.exceptions import CapabilityMissing, EngineAcquisitionFailed

router = APIRouter(prefix="/api/engine", tags=["engine"])

def _status() -> dict:
    loader = core.globals.engine_loader
    return {
        "state": loader.state.value,
        "version": loader.engine.version if loader.engine else None,
        "attempts": loader.attempts,
        "diagnostics": loader.diagnostics.to_dict() if loader.diagnostics else None,
    }

@router.get("/status")
async def get_engine_status():
    """Returns the engine lifecycle state and the last load failure, if any."""
    status = _status()
    status["ram_check"] = check_ram_availability()
    return status

@router.post("/ensure")
async def ensure_engine():
    """Waits for the shared engine; concurrent requests share one acquisition."""
    try:
        await core.globals.engine_loader.ensure_ready()
    except (CapabilityMissing, EngineAcquisitionFailed):
        # Diagnostics are already recorded on the loader
        pass
    return _status()

@router.get("/diagnostics/report")
async def get_diagnostics_report():
    diagnostics = core.globals.job_manager.last_diagnostics
    return {"report": diagnostics.report() if diagnostics else None}

@router.post("/diagnostics/clear")
async def clear_diagnostics():
    core.globals.engine_loader.clear_diagnostics()
    return _status()
