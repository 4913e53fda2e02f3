"""
Exam attempt and grading engine
"""
__version__ = "0.4.0"
