"""API v1 router that aggregates all endpoint routers."""

from fastapi import APIRouter

from order_tagger.api.v1 import health, runs

api_router = APIRouter()

api_router.include_router(
    health.router,
    tags=["Health"],
)

api_router.include_router(
    runs.router,
    prefix="/runs",
    tags=["Runs"],
)
