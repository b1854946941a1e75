"""
Assessment Engine Repositories

This module defines the repository interfaces the engine depends on. The
lifecycle manager and its collaborators only ever talk to these contracts;
SQL and in-memory implementations live in ``sql_repository`` and
``memory_repository``.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, FrozenSet, List, Optional
import datetime

from lms_backend.assessments.models import (
    Assessment,
    Question,
    QuestionFilters,
    QuestionOption,
    StudentAttempt,
    StudentAnswer,
    TopicPerformanceRecord
)


class QuestionRepository(ABC):
    """
    Read contract over assessment questions and the course question bank.
    """

    @abstractmethod
    async def get_assessment(self, assessment_id: str) -> Optional[Assessment]:
        """
        Retrieve an assessment by its ID.

        Args:
            assessment_id: The unique identifier for the assessment

        Returns:
            The assessment if found, None otherwise

        Raises:
            StorageError: If an error occurs during retrieval
        """
        pass

    @abstractmethod
    async def get_question(self, question_id: str) -> Optional[Question]:
        """
        Retrieve a question by its ID.

        Assessment questions are searched first, then bank entries.

        Args:
            question_id: The unique identifier for the question

        Returns:
            The question with its options if found, None otherwise
        """
        pass

    @abstractmethod
    async def get_question_options(self, question_id: str) -> List[QuestionOption]:
        """Options of a question, ordered by label."""
        pass

    @abstractmethod
    async def get_correct_option_ids(self, question_id: str) -> FrozenSet[str]:
        """Ids of the options flagged correct for a question."""
        pass

    @abstractmethod
    async def get_assessment_questions(self, assessment_id: str) -> List[Question]:
        """Questions of an assessment with options, ordered by question number."""
        pass

    @abstractmethod
    async def list_bank_questions(
        self,
        course_id: str,
        filters: Optional[QuestionFilters] = None
    ) -> List[Question]:
        """
        List bank entries of a course.

        Args:
            course_id: Course owning the bank
            filters: Optional type/topic/subtopic/difficulty/bloom filters

        Returns:
            Matching bank entries with options ordered by label
        """
        pass

    @abstractmethod
    async def add_bank_question(self, question: Question) -> Question:
        """Store a new bank entry with its options."""
        pass


class EnrollmentDirectory(ABC):
    """Identity/enrollment collaborator."""

    @abstractmethod
    async def find_enrollment(self, student_id: str, course_id: str) -> Optional[str]:
        """
        Find the enrollment linking a student to a course.

        Returns:
            The enrollment id, or None when the student is not enrolled
        """
        pass


class AttemptStore(ABC):
    """
    Persistence handle for attempts and their answers.

    Writes made inside ``transaction()`` are applied together or not at all.
    """

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Group the writes of one engine operation."""
        yield

    @abstractmethod
    async def create_attempt(self, attempt: StudentAttempt) -> StudentAttempt:
        pass

    @abstractmethod
    async def get_attempt(self, attempt_id: str) -> Optional[StudentAttempt]:
        pass

    @abstractmethod
    async def list_attempts(self, assessment_id: str, student_id: str) -> List[StudentAttempt]:
        """Attempts of a student for an assessment, newest first."""
        pass

    @abstractmethod
    async def list_answers(self, attempt_id: str) -> List[StudentAnswer]:
        """Answers of an attempt in submission order."""
        pass

    @abstractmethod
    async def save_answer(self, answer: StudentAnswer) -> StudentAnswer:
        """
        Insert an answer unless one already exists for its (attempt, question).

        Returns:
            The stored answer; the pre-existing row when the pair was
            already answered
        """
        pass

    @abstractmethod
    async def finalize_attempt(
        self,
        attempt_id: str,
        score: float,
        total_points: float,
        percentage: int,
        time_taken_minutes: int,
        submitted_at: datetime.datetime
    ) -> StudentAttempt:
        """
        Transition an in-progress attempt to completed.

        The update only applies when the attempt is not yet completed.

        Raises:
            AlreadyCompletedError: If another writer completed it first
            NotFoundError: If the attempt does not exist
        """
        pass


class TopicPerformanceStore(ABC):
    """Storage of per-(student, topic, subtopic) counters."""

    @abstractmethod
    async def increment(
        self,
        student_id: str,
        topic_id: str,
        subtopic_id: Optional[str],
        is_correct: bool,
        attempted_at: datetime.datetime
    ) -> None:
        """Atomically increment the bucket, creating it on first use."""
        pass

    @abstractmethod
    async def list_records(
        self,
        student_id: str,
        topic_ids: Optional[List[str]] = None
    ) -> List[TopicPerformanceRecord]:
        pass
