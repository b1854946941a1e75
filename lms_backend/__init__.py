"""
LMS Adaptive Assessment Engine

Backend for course assessments: attempt lifecycle, answer evaluation for
MCQ, MSQ and subjective questions, adaptive question selection, per-topic
performance tracking and a reusable course question bank.
"""

__version__ = "1.0.0"
