"""
Memory Assessment Store Module

This module provides an in-memory implementation of every repository
contract of the engine, for development and testing purposes.

Each write checks and mutates state without awaiting in between, so it is
atomic on a single event loop. Writes made inside ``transaction()`` record
an undo step and are reverted if the operation fails.
"""

import copy
import datetime
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import AsyncIterator, Callable, Dict, FrozenSet, List, Optional, Tuple

from lms_backend.common.logger import app_logger
from lms_backend.common.error_handling import AlreadyCompletedError, NotFoundError
from lms_backend.assessments.models import (
    Assessment,
    Enrollment,
    Question,
    QuestionFilters,
    QuestionOption,
    StudentAttempt,
    StudentAnswer,
    TopicPerformanceRecord,
    new_id
)
from lms_backend.assessments.repositories import (
    AttemptStore,
    EnrollmentDirectory,
    QuestionRepository,
    TopicPerformanceStore
)

# Setup logging
logger = app_logger.getChild("memory_repository")

BucketKey = Tuple[str, str, Optional[str]]

_undo_journal: ContextVar[Optional[List[Callable[[], None]]]] = ContextVar(
    "lms_memory_undo_journal", default=None
)


class MemoryAssessmentStore(QuestionRepository, EnrollmentDirectory, AttemptStore, TopicPerformanceStore):
    """
    In-memory implementation of the engine's repositories.

    This implementation stores everything in dictionaries and is intended for
    development and testing purposes only.
    """

    def __init__(
        self,
        assessments: Optional[List[Assessment]] = None,
        questions: Optional[List[Question]] = None,
        enrollments: Optional[List[Enrollment]] = None
    ):
        """
        Initialize the store with optional initial data.

        Args:
            assessments: Assessments to load
            questions: Assessment questions and bank entries to load
            enrollments: Enrollments to load
        """
        self._assessments: Dict[str, Assessment] = {}
        self._questions: Dict[str, Question] = {}
        self._bank: Dict[str, Question] = {}
        self._enrollments: Dict[Tuple[str, str], Enrollment] = {}
        self._attempts: Dict[str, StudentAttempt] = {}
        self._answers: Dict[str, List[StudentAnswer]] = {}
        self._topic_performance: Dict[BucketKey, TopicPerformanceRecord] = {}

        for assessment in assessments or []:
            self._assessments[assessment.id] = assessment
        for question in questions or []:
            self._store_question(question)
        for enrollment in enrollments or []:
            self._enrollments[(enrollment.student_id, enrollment.course_id)] = enrollment

    # Seeding helpers

    def _store_question(self, question: Question) -> None:
        question.check_invariants()
        if question.is_bank_entry:
            self._bank[question.id] = question
        else:
            self._questions[question.id] = question

    def add_assessment(self, assessment: Assessment, questions: Optional[List[Question]] = None) -> Assessment:
        self._assessments[assessment.id] = assessment
        for question in questions or []:
            self._store_question(question)
        return assessment

    def add_enrollment(self, student_id: str, course_id: str) -> str:
        enrollment = Enrollment(id=new_id(), student_id=student_id, course_id=course_id)
        self._enrollments[(student_id, course_id)] = enrollment
        return enrollment.id

    # Transactions

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if _undo_journal.get() is not None:
            yield
            return

        journal: List[Callable[[], None]] = []
        token = _undo_journal.set(journal)
        try:
            yield
        except Exception:
            for undo in reversed(journal):
                undo()
            logger.debug(f"Rolled back {len(journal)} in-memory writes")
            raise
        finally:
            _undo_journal.reset(token)

    def _record_undo(self, undo: Callable[[], None]) -> None:
        journal = _undo_journal.get()
        if journal is not None:
            journal.append(undo)

    # QuestionRepository

    async def get_assessment(self, assessment_id: str) -> Optional[Assessment]:
        return self._assessments.get(assessment_id)

    async def get_question(self, question_id: str) -> Optional[Question]:
        return self._questions.get(question_id) or self._bank.get(question_id)

    async def get_question_options(self, question_id: str) -> List[QuestionOption]:
        question = await self.get_question(question_id)
        if question is None:
            raise NotFoundError("Question", question_id)
        return sorted(question.options, key=lambda o: o.option_label)

    async def get_correct_option_ids(self, question_id: str) -> FrozenSet[str]:
        options = await self.get_question_options(question_id)
        return frozenset(o.id for o in options if o.is_correct)

    async def get_assessment_questions(self, assessment_id: str) -> List[Question]:
        questions = [q for q in self._questions.values() if q.assessment_id == assessment_id]
        return sorted(questions, key=lambda q: q.question_number or 0)

    async def list_bank_questions(
        self,
        course_id: str,
        filters: Optional[QuestionFilters] = None
    ) -> List[Question]:
        filters = filters or QuestionFilters()
        return [
            q for q in self._bank.values()
            if q.course_id == course_id and filters.matches(q)
        ]

    async def add_bank_question(self, question: Question) -> Question:
        self._store_question(question)
        self._record_undo(lambda: self._bank.pop(question.id, None))
        return question

    # EnrollmentDirectory

    async def find_enrollment(self, student_id: str, course_id: str) -> Optional[str]:
        enrollment = self._enrollments.get((student_id, course_id))
        return enrollment.id if enrollment else None

    # AttemptStore

    async def create_attempt(self, attempt: StudentAttempt) -> StudentAttempt:
        self._attempts[attempt.id] = attempt
        self._answers[attempt.id] = []
        self._record_undo(lambda: self._attempts.pop(attempt.id, None))
        return copy.copy(attempt)

    async def get_attempt(self, attempt_id: str) -> Optional[StudentAttempt]:
        attempt = self._attempts.get(attempt_id)
        return copy.copy(attempt) if attempt else None

    async def list_attempts(self, assessment_id: str, student_id: str) -> List[StudentAttempt]:
        attempts = [
            copy.copy(a) for a in self._attempts.values()
            if a.assessment_id == assessment_id and a.student_id == student_id
        ]
        return sorted(attempts, key=lambda a: a.started_at, reverse=True)

    async def list_answers(self, attempt_id: str) -> List[StudentAnswer]:
        return list(self._answers.get(attempt_id, []))

    async def save_answer(self, answer: StudentAnswer) -> StudentAnswer:
        answers = self._answers.setdefault(answer.attempt_id, [])
        for existing in answers:
            if existing.question_id == answer.question_id:
                return existing
        answers.append(answer)
        self._record_undo(lambda: answers.remove(answer))
        return answer

    async def finalize_attempt(
        self,
        attempt_id: str,
        score: float,
        total_points: float,
        percentage: int,
        time_taken_minutes: int,
        submitted_at: datetime.datetime
    ) -> StudentAttempt:
        attempt = self._attempts.get(attempt_id)
        if attempt is None:
            raise NotFoundError("Attempt", attempt_id)
        if attempt.is_completed:
            raise AlreadyCompletedError(attempt_id)

        previous = copy.copy(attempt)
        attempt.is_completed = True
        attempt.submitted_at = submitted_at
        attempt.score = score
        attempt.total_points = total_points
        attempt.percentage = percentage
        attempt.time_taken_minutes = time_taken_minutes
        self._record_undo(lambda: self._attempts.__setitem__(attempt_id, previous))
        return copy.copy(attempt)

    # TopicPerformanceStore

    async def increment(
        self,
        student_id: str,
        topic_id: str,
        subtopic_id: Optional[str],
        is_correct: bool,
        attempted_at: datetime.datetime
    ) -> None:
        key = (student_id, topic_id, subtopic_id)
        record = self._topic_performance.get(key)
        if record is None:
            record = TopicPerformanceRecord(student_id=student_id, topic_id=topic_id, subtopic_id=subtopic_id)
            self._topic_performance[key] = record

        correct = 1 if is_correct else 0
        previous_attempted_at = record.last_attempted_at
        record.attempts += 1
        record.correct_answers += correct
        record.last_attempted_at = attempted_at

        def undo() -> None:
            record.attempts -= 1
            record.correct_answers -= correct
            record.last_attempted_at = previous_attempted_at
            if record.attempts == 0:
                self._topic_performance.pop(key, None)

        self._record_undo(undo)

    async def list_records(
        self,
        student_id: str,
        topic_ids: Optional[List[str]] = None
    ) -> List[TopicPerformanceRecord]:
        records = [
            copy.copy(r) for r in self._topic_performance.values()
            if r.student_id == student_id and (topic_ids is None or r.topic_id in topic_ids)
        ]
        return sorted(records, key=lambda r: (r.topic_id, r.subtopic_id or ""))
