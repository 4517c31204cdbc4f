from fastapi import APIRouter

from rewards.api import status

router = APIRouter()
router.include_router(status.router, prefix="/status", tags=["status"])
