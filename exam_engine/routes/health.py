# FILE: exam_engine/routes/health.py
"""
Health check endpoint
"""
import logging

from fastapi import APIRouter

from exam_engine import __version__
from exam_engine.config import get_settings
from exam_engine.grading.ai_client import get_ai_grader
from exam_engine.services.kv_store import RedisKeyValueStore, get_kv_store

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """
    Health check endpoint
    Returns ai_grading_active=true if an OpenAI client is configured
    """
    settings = get_settings()
    kv = get_kv_store()

    return {
        "status": "healthy",
        "version": __version__,
        "environment": settings.environment,
        "ai_grading_active": get_ai_grader().client is not None,
        "kv_backend": "redis" if isinstance(kv, RedisKeyValueStore) else "memory",
        "timer_sweep_enabled": settings.sweep_enabled
    }
