import os
import platformdirs
from pathlib import Path

APP_NAME   = "VideoForge"
APP_AUTHOR = "VideoForge"

BASE_DIR      = Path(platformdirs.user_data_dir(APP_NAME, APP_AUTHOR))
ENGINE_DIR    = BASE_DIR / "engine"
WORKSPACE_DIR = BASE_DIR / "workspace"    # Engine-private scratch space
UPLOADS_DIR   = BASE_DIR / "uploads"
LOG_FILE      = BASE_DIR / "videoforge.log"

FASTAPI_PORT = 47822   # Fixed, uncommon port to avoid collisions

# Optional self-hosted engine binary. When unset, static_ffmpeg fetches it.
ENGINE_BASE_URL = os.environ.get("VIDEOFORGE_ENGINE_URL") or None
ENGINE_SHA256   = os.environ.get("VIDEOFORGE_ENGINE_SHA256") or None

# Per-job watchdog in seconds; unset means a stalled command stalls the queue.
_timeout = os.environ.get("VIDEOFORGE_JOB_TIMEOUT")
JOB_TIMEOUT = float(_timeout) if _timeout else None

REQUIRED_RAM_BYTES = 1_000_000_000   # 1 GB: input + output buffers + ffmpeg
LOG_TAIL_LINES     = 8               # Engine log lines kept for error messages
