from fastapi import APIRouter

from clinic_core.api.routes import clinics, health, queue, tiers

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(tiers.router, prefix="/tiers", tags=["tiers"])
api_router.include_router(clinics.router, prefix="/clinics", tags=["clinics"])
api_router.include_router(queue.router, prefix="/clinics", tags=["queue"])
