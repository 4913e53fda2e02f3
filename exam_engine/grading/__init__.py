"""
Answer grading: deterministic policies and AI-assisted open-text scoring
"""
