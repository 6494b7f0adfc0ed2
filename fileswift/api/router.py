"""Router aggregating all endpoint routers."""

from fastapi import APIRouter

from fileswift.api.download import router as download_router
from fileswift.api.health import router as health_router
from fileswift.api.jobs import router as jobs_router
from fileswift.api.upload import router as upload_router

api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(upload_router)
api_router.include_router(jobs_router)
api_router.include_router(download_router)
