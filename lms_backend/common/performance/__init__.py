"""
Topic Performance Tracking

Per-student accuracy counters for each topic/subtopic bucket.
"""

from lms_backend.common.performance.tracker import TopicPerformanceTracker

__all__ = ["TopicPerformanceTracker"]
