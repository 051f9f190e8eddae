from fastapi import APIRouter

from emberpulse.api.routes import metrics

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(metrics.router, tags=["metrics"])
