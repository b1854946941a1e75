"""
Topic Performance Tracker

This module maintains rolling per-student accuracy counters for each
(topic, subtopic) bucket. The counters feed recommendation and analytics
views outside the assessment engine.
"""

import datetime
from typing import Dict, Iterable, List, Optional, Tuple, Union

from lms_backend.common.logger import app_logger
from lms_backend.assessments.models import TopicAccuracy, TopicPerformanceRecord, utcnow
from lms_backend.assessments.repositories import TopicPerformanceStore

# Module logger
logger = app_logger.getChild("performance.tracker")

# A course topic given either as its id or as (id, name)
TopicRef = Union[str, Tuple[str, Optional[str]]]


class TopicPerformanceTracker:
    """
    Records answer outcomes per (student, topic, subtopic) and reports accuracy.

    A missing subtopic is its own bucket, separate from every named subtopic
    of the same topic.

    Args:
        store: Storage of the counters
    """

    def __init__(self, store: TopicPerformanceStore):
        self.store = store

    async def record_result(
        self,
        student_id: str,
        topic_id: str,
        subtopic_id: Optional[str],
        is_correct: bool,
        attempted_at: Optional[datetime.datetime] = None
    ) -> None:
        """
        Count one answer in the student's bucket.

        Increments attempts by one and correct answers when the answer was
        correct, creating the bucket on first use.

        Args:
            student_id: Student who answered
            topic_id: Topic of the question
            subtopic_id: Subtopic of the question, or None
            is_correct: Whether the answer was correct
            attempted_at: When the answer was given; defaults to now
        """
        await self.store.increment(
            student_id,
            topic_id,
            subtopic_id,
            is_correct,
            attempted_at or utcnow()
        )
        logger.debug(
            f"Recorded {'correct' if is_correct else 'incorrect'} answer for student {student_id} "
            f"on topic {topic_id}/{subtopic_id}"
        )

    async def get_topic_performance(
        self,
        student_id: str,
        topic_ids: Optional[List[str]] = None
    ) -> List[TopicPerformanceRecord]:
        """
        Return the student's buckets with their accuracy.

        Args:
            student_id: Student to report on
            topic_ids: Restrict to these topics

        Returns:
            One record per bucket; ``accuracy`` is a one-decimal percentage
            string, "0" without attempts
        """
        return await self.store.list_records(student_id, topic_ids)

    async def get_course_topic_performance(
        self,
        student_id: str,
        topics: Iterable[TopicRef]
    ) -> List[TopicAccuracy]:
        """
        Aggregate the student's buckets per course topic.

        Every given topic gets a row, with zero counts when never attempted.

        Args:
            student_id: Student to report on
            topics: Course topics, as ids or (id, name) pairs

        Returns:
            Rows in the order the topics were given
        """
        rows: Dict[str, TopicAccuracy] = {}
        for topic in topics:
            topic_id, name = (topic, None) if isinstance(topic, str) else topic
            rows[topic_id] = TopicAccuracy(topic_id=topic_id, topic_name=name)

        if not rows:
            return []

        for record in await self.store.list_records(student_id, list(rows)):
            row = rows[record.topic_id]
            row.attempts += record.attempts
            row.correct_answers += record.correct_answers

        return list(rows.values())
