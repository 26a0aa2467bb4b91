"""
Health check and status endpoints
"""
from fastapi import APIRouter
from datetime import datetime, timezone
from shop_analytics.config import get_settings
from shop_analytics import __version__
from shop_analytics.services.analytics_service import background_refresher

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__
    }


@router.get("/status")
async def get_status():
    """Get system status, including recent background cache refreshes"""
    recent = list(background_refresher.outcomes)[-10:]
    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "background_refresh": {
            "pending": background_refresher.pending,
            "recent": [
                {
                    "shop": o.shop,
                    "key": o.key,
                    "success": o.success,
                    "error": o.error,
                    "finished_at": o.finished_at.isoformat()
                }
                for o in recent
            ]
        },
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
