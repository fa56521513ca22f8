import logging
import uvicorn
from fastapi import FastAPI
from rich.logging import RichHandler

from api.router import api_router
from api.jobs import sweep_uploads
import core.globals
from config import FASTAPI_PORT, LOG_FILE

# Basic logging setup
FORMAT = "%(message)s"
LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
_file_handler = logging.FileHandler(LOG_FILE, encoding="utf-8")
_file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
logging.basicConfig(
    level="INFO", format=FORMAT, datefmt="[%X]", handlers=[RichHandler(), _file_handler]
)
logger = logging.getLogger(__name__)


app = FastAPI(title="VideoForge API")

app.include_router(api_router)

@app.on_event("startup")
async def startup_event():
    from api.websocket import ws_manager
    sweep_uploads()   # Leftovers from a crashed run
    if core.globals.job_manager is None:
        core.globals.init_globals()
    core.globals.job_manager.add_event_callback(ws_manager.broadcast)
    await core.globals.job_manager.startup()

@app.on_event("shutdown")
async def shutdown_event():
    await core.globals.job_manager.shutdown()
    sweep_uploads()


if __name__ == "__main__":
    core.globals.init_globals()
    logger.info(f"Serving VideoForge on http://127.0.0.1:{FASTAPI_PORT}")
    uvicorn.run(app, host="127.0.0.1", port=FASTAPI_PORT, log_level="warning")
