from fastapi import APIRouter
from api.websocket import router as ws_router
from api.engine import router as engine_router
from api.jobs import router as jobs_router

api_router = APIRouter()

# Mount the sub-routers
api_router.include_router(ws_router)
api_router.include_router(engine_router)
api_router.include_router(jobs_router)
