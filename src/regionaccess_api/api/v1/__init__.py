from fastapi import APIRouter

from .endpoints import health, region_access, region_assignments, region_grants

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(region_grants.router)
router.include_router(region_access.router)
router.include_router(region_assignments.router)
