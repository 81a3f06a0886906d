"""
Health check and status endpoints
"""
from fastapi import APIRouter
from datetime import datetime
from app.config import get_settings
from app import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__
    }


@router.get("/status")
async def get_status():
    """Get system status"""
    from app.scheduler import get_scheduled_jobs

    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "sync": {
            "batch_size": settings.sync_batch_size,
            "max_retries": settings.sync_max_retries,
            "shop_timeout_seconds": settings.shop_sync_timeout_seconds,
            "batch_timeout_seconds": settings.batch_sync_timeout_seconds,
            "max_concurrent_shops": settings.sync_max_concurrent_shops or None
        },
        "scheduler": {
            "enabled": settings.enable_scheduler,
            "jobs": get_scheduled_jobs()
        },
        "timestamp": datetime.utcnow().isoformat()
    }
