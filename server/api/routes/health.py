"""Health check routes"""
from fastapi import APIRouter
from config.settings import settings
from core.dependencies import get_context_store, get_orchestrator
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check"""
    orchestrator = get_orchestrator()
    return {
        "status": "shutting_down" if orchestrator.is_shutting_down else "ok",
        "service": "tripweave-api",
    }


@router.get("/health/store")
async def store_health():
    """Check user context store connectivity"""
    backend = settings.USER_CONTEXT_BACKEND
    try:
        store = get_context_store()
        await store.ping()
        return {
            "status": "ok",
            "store": {"backend": backend, "connected": True, "contexts": await store.count()},
        }
    except Exception as e:
        logger.error(f"Context store health check failed: {e}")
        return {
            "status": "error",
            "store": {"backend": backend, "connected": False, "error": str(e)},
            "message": "Context store unavailable. Check USER_CONTEXT_BACKEND and Supabase credentials in .env",
        }
