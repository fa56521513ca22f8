from enum import Enum
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path
import uuid
from typing import Optional, Any, Dict, List

class JobStatus(str, Enum):
    QUEUED    = "queued"
    RUNNING   = "running"
    COMPLETED = "completed"
    FAILED    = "failed"
    CANCELLED = "cancelled"

TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)

class ConversionProfile(str, Enum):
    FAST_REMUX    = "fast-remux"      # Stream copy, container change only
    FULL_REENCODE = "full-reencode"   # Full transcode to H.264/AAC

class EngineState(str, Enum):
    IDLE      = "idle"
    ACQUIRING = "acquiring"
    READY     = "ready"
    FAILED    = "failed"

class FailureKind(str, Enum):
    CAPABILITY_MISSING        = "capability_missing"
    ENGINE_ACQUISITION_FAILED = "engine_acquisition_failed"
    ENGINE_NOT_READY          = "engine_not_ready"
    CONVERSION_FAILED         = "conversion_failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EnvironmentInfo:
    platform: str             = "unknown"
    python_version: str       = "unknown"
    shared_memory: bool       = False
    sufficient_ram: bool      = False
    available_ram_gb: float   = 0.0
    required_ram_gb: float    = 0.0

    REQUIRED = ("shared_memory",)

    def missing_capabilities(self) -> List[str]:
        return [name for name in self.REQUIRED if not getattr(self, name)]


@dataclass
class FailureDiagnostics:
    kind: FailureKind
    message: str
    environment: Optional[EnvironmentInfo] = None
    resource: Optional[str]                = None   # Failing URL or file, if any
    timestamp: datetime                    = field(default_factory=_utcnow)

    @property
    def retryable(self) -> bool:
        """Only transient failures are worth retrying without changing the host."""
        return self.kind in (FailureKind.ENGINE_ACQUISITION_FAILED, FailureKind.CONVERSION_FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "environment": asdict(self.environment) if self.environment else None,
            "resource": self.resource,
            "timestamp": self.timestamp.isoformat(),
            "retryable": self.retryable,
        }

    def report(self) -> str:
        """Plain-text report the user can paste into a bug report."""
        env = self.environment
        lines = [
            "VideoForge Debug Info:",
            f"Kind: {self.kind.value}",
            f"Platform: {env.platform if env else 'unknown'}",
            f"Python: {env.python_version if env else 'unknown'}",
            f"Shared Memory: {env.shared_memory if env else 'unknown'}",
            f"Error: {self.message}",
        ]
        if self.resource:
            lines.append(f"Failed Resource: {self.resource}")
        lines.append(f"Timestamp: {self.timestamp.isoformat()}")
        return "\n".join(lines)


@dataclass
class Artifact:
    filename: str
    data: bytes      = field(repr=False, default=b"")
    media_type: str  = "video/mp4"

    @property
    def size(self) -> int:
        return len(self.data)

    def save(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.data)
        return path


@dataclass
class Job:
    id: str                                   = field(default_factory=lambda: str(uuid.uuid4()))
    original_filename: str                    = ""
    source_path: Optional[Path]               = None
    profile: ConversionProfile                = ConversionProfile.FAST_REMUX
    status: JobStatus                         = JobStatus.QUEUED
    progress: float                           = 0.0    # 0 → 100
    diagnostics: Optional[FailureDiagnostics] = None
    artifact: Optional[Artifact]              = field(default=None, repr=False)
    created_at: datetime                      = field(default_factory=_utcnow)
    started_at: Optional[datetime]            = None
    finished_at: Optional[datetime]           = None
    owns_source: bool                         = False  # Source is an upload copy we delete
    _remove_when_done: bool                   = field(default=False, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.original_filename,
            "profile": self.profile.value,
            "status": self.status.value,
            "progress": self.progress,
            "diagnostics": self.diagnostics.to_dict() if self.diagnostics else None,
            "artifact": {
                "filename": self.artifact.filename,
                "size": self.artifact.size,
                "media_type": self.artifact.media_type,
            } if self.artifact else None,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
