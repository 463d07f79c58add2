from fastapi import APIRouter

from todochain.api.v1.endpoints import health, plans

v1_router = APIRouter()
v1_router.include_router(health.router, tags=["health"])
v1_router.include_router(plans.router, tags=["plans"])
