# FILE: exam_engine/models/__init__.py
"""
Pydantic models for request validation
"""
from exam_engine.models.exam import *
