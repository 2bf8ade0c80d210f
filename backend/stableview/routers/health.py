"""Health check router."""

from datetime import datetime

from fastapi import APIRouter

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "stableview-core",
        "version": "1.0.0",
        "timestamp": datetime.utcnow().isoformat(),
    }
