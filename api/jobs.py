from fastapi import APIRouter, HTTPException, File, Form, Response, UploadFile
from pydantic import BaseModel
from typing import List
from pathlib import Path
import shutil
import uuid

from schemas.models import ConversionProfile
import core.globals
from config import UPLOADS_DIR

router = APIRouter(prefix="/api/jobs", tags=["jobs"])

class JobPathsRequest(BaseModel):
    paths: List[str]
    profile: ConversionProfile = ConversionProfile.FAST_REMUX

def _get_job_or_404(job_id: str):
    job = core.globals.job_manager.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job

@router.get("")
async def list_jobs():
    manager = core.globals.job_manager
    return {
        "jobs": [job.to_dict() for job in manager.list_jobs()],
        "summary": manager.summary(),
    }

@router.post("/paths")
async def enqueue_paths(req: JobPathsRequest):
    """Queues files that already exist on this machine. Originals are never moved."""
    paths = [Path(p) for p in req.paths]
    for p in paths:
        if not p.is_file():
            raise HTTPException(status_code=400, detail=f"File not found: {p}")

    job_ids = [core.globals.job_manager.enqueue(p, req.profile) for p in paths]
    return {"job_ids": job_ids}

@router.post("/upload")
async def upload_files(
    files: List[UploadFile] = File(...),
    profile: ConversionProfile = Form(ConversionProfile.FAST_REMUX),
):
    """Receives files via standard multipart format and queues them."""
    job_ids = []
    for f in files:
        save_path = UPLOADS_DIR / f"{uuid.uuid4()}_{Path(f.filename).name}"
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, "wb") as buffer:
            shutil.copyfileobj(f.file, buffer)

        job_ids.append(core.globals.job_manager.enqueue(save_path, profile, filename=f.filename, owns_source=True))
    return {"job_ids": job_ids}

def sweep_uploads():
    """Deletes every uploaded copy; nothing outlives the process."""
    if UPLOADS_DIR.exists():
        shutil.rmtree(UPLOADS_DIR, ignore_errors=True)

@router.post("/start")
async def start_queue():
    started = core.globals.job_manager.start_queue()
    return {"started": started}

@router.post("/cancel")
async def cancel_active_job():
    return {"cancelled": core.globals.job_manager.cancel_current()}

@router.post("/clear-completed")
async def clear_completed():
    return {"removed": core.globals.job_manager.clear_completed()}

@router.get("/{job_id}")
async def get_job(job_id: str):
    return _get_job_or_404(job_id).to_dict()

@router.post("/{job_id}/cancel")
async def cancel_job(job_id: str):
    _get_job_or_404(job_id)
    return {"cancelled": core.globals.job_manager.cancel_job(job_id)}

@router.post("/{job_id}/retry")
async def retry_job(job_id: str):
    _get_job_or_404(job_id)
    try:
        new_id = core.globals.job_manager.retry_job(job_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"job_id": new_id}

@router.delete("/{job_id}")
async def remove_job(job_id: str):
    _get_job_or_404(job_id)
    removed = core.globals.job_manager.remove_job(job_id)
    return {"removed": removed, "deferred": not removed}

@router.get("/{job_id}/artifact")
async def get_artifact(job_id: str):
    job = _get_job_or_404(job_id)
    if not job.artifact:
        raise HTTPException(status_code=404, detail="Job has no output")
    return Response(
        content=job.artifact.data,
        media_type=job.artifact.media_type,
        headers={"Content-Disposition": f'attachment; filename="{job.artifact.filename}"'},
    )
