# FILE: exam_engine/routes/metrics.py
"""
Metrics API over in-memory telemetry counters

Endpoints:
- GET /metrics/summary

Telemetry files (not scanned here):
  {LOGS_DIR}/telemetry/events-YYYY-MM-DD.jsonl
"""
import logging

from fastapi import APIRouter

from exam_engine.services.telemetry import get_telemetry_summary

logger = logging.getLogger(__name__)
router = APIRouter(tags=["metrics"])


@router.get("/summary")
async def metrics_summary():
    return get_telemetry_summary()
