# app/routers/health.py

from fastapi import APIRouter

from app.config import get_settings

settings = get_settings()
router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "service": "oms-match-api",
    }


@router.get("/ready")
async def readiness_check():
    """Readiness: reports whether the record store is configured."""
    configured = bool(settings.supabase_url and settings.supabase_service_role_key)
    return {
        "status": "ready" if configured else "degraded",
        "checks": {
            "database": "configured" if configured else "missing credentials",
        }
    }
