"""
SQL Repository Module for the Assessment Engine

This module provides SQLAlchemy (async) implementations of the engine's
repository contracts. All repositories built on the same ``SqlDatabase``
share one session while a ``transaction()`` is active, so the writes of one
engine operation commit or roll back together.
"""

import datetime
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import AsyncIterator, FrozenSet, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lms_backend.common.logger import app_logger
from lms_backend.common.error_handling import (
    AlreadyCompletedError,
    NotFoundError,
    StorageError
)
from lms_backend.assessments.models import (
    Assessment,
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
from lms_backend.assessments.database_models import (
    AssessmentRecord,
    EnrollmentRecord,
    QuestionBankRecord,
    QuestionRecord,
    StudentAnswerRecord,
    StudentAttemptRecord,
    TopicPerformanceRecordORM,
    question_to_bank_record,
    question_to_record
)

# Module logger
logger = app_logger.getChild("sql_repository")

# (database, session) bound by the innermost active transaction of this task
_active_session: ContextVar[Optional[Tuple["SqlDatabase", AsyncSession]]] = ContextVar(
    "lms_active_session", default=None
)


class SqlDatabase:
    """
    Session factory shared by the SQL repositories.

    Args:
        session_factory: Async session factory bound to the engine
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    def active_session(self) -> Optional[AsyncSession]:
        bound = _active_session.get()
        if bound is not None and bound[0] is self:
            return bound[1]
        return None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        Provide a transactional scope shared by every repository call made
        inside it. Nested calls join the outer transaction.
        """
        session = self.active_session()
        if session is not None:
            yield session
            return

        session = self.session_factory()
        token = _active_session.set((self, session))
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Database error in transaction: {str(e)}")
            raise StorageError(f"Database error in transaction: {str(e)}", operation="transaction", cause=e) from e
        except Exception:
            await session.rollback()
            raise
        finally:
            _active_session.reset(token)
            await session.close()


class BaseSqlRepository:
    """
    Base repository implementation with common functionality.

    Provides the session scope used by every query: the active transaction's
    session when there is one, otherwise a short-lived session committed on
    success.
    """

    domain_type = "base"

    def __init__(self, database: SqlDatabase):
        self.database = database

    @asynccontextmanager
    async def _async_session_scope(self) -> AsyncIterator[AsyncSession]:
        """
        Provide an async transactional scope around a series of operations.
        """
        session = self.database.active_session()
        need_close = session is None
        if need_close:
            session = self.database.session_factory()
        try:
            yield session
            if need_close:
                await session.commit()
        except SQLAlchemyError as e:
            if need_close:
                await session.rollback()
            logger.error(f"Database error in {self.domain_type} repository: {str(e)}")
            raise StorageError(
                f"Database error in {self.domain_type} repository: {str(e)}",
                operation=self.domain_type,
                cause=e
            ) from e
        except Exception:
            if need_close:
                await session.rollback()
            raise
        finally:
            if need_close:
                await session.close()


class SqlQuestionRepository(BaseSqlRepository, QuestionRepository):
    """Questions, bank entries and assessments stored in SQL tables."""

    domain_type = "question"

    async def get_assessment(self, assessment_id: str) -> Optional[Assessment]:
        async with self._async_session_scope() as session:
            record = await session.get(AssessmentRecord, assessment_id)
            return record.to_domain() if record else None

    async def get_question(self, question_id: str) -> Optional[Question]:
        async with self._async_session_scope() as session:
            record = await session.get(QuestionRecord, question_id)
            if record is None:
                record = await session.get(QuestionBankRecord, question_id)
            return record.to_domain() if record else None

    async def get_question_options(self, question_id: str) -> List[QuestionOption]:
        question = await self.get_question(question_id)
        if question is None:
            raise NotFoundError("Question", question_id)
        return sorted(question.options, key=lambda o: o.option_label)

    async def get_correct_option_ids(self, question_id: str) -> FrozenSet[str]:
        options = await self.get_question_options(question_id)
        return frozenset(o.id for o in options if o.is_correct)

    async def get_assessment_questions(self, assessment_id: str) -> List[Question]:
        async with self._async_session_scope() as session:
            stmt = (
                select(QuestionRecord)
                .where(QuestionRecord.assessment_id == assessment_id)
                .order_by(QuestionRecord.question_number)
            )
            result = await session.execute(stmt)
            return [record.to_domain() for record in result.scalars().all()]

    async def list_bank_questions(
        self,
        course_id: str,
        filters: Optional[QuestionFilters] = None
    ) -> List[Question]:
        filters = filters or QuestionFilters()
        stmt = select(QuestionBankRecord).where(QuestionBankRecord.course_id == course_id)
        if filters.question_type is not None:
            stmt = stmt.where(QuestionBankRecord.question_type == filters.question_type.value)
        if filters.topic_id is not None:
            stmt = stmt.where(QuestionBankRecord.topic_id == filters.topic_id)
        if filters.subtopic_id is not None:
            stmt = stmt.where(QuestionBankRecord.subtopic_id == filters.subtopic_id)
        if filters.difficulty is not None:
            stmt = stmt.where(QuestionBankRecord.difficulty == filters.difficulty.value)
        if filters.bloom_level is not None:
            stmt = stmt.where(QuestionBankRecord.bloom_level == filters.bloom_level.value)
        stmt = stmt.order_by(QuestionBankRecord.created_at.desc(), QuestionBankRecord.id)

        async with self._async_session_scope() as session:
            result = await session.execute(stmt)
            return [record.to_domain() for record in result.scalars().all()]

    async def add_bank_question(self, question: Question) -> Question:
        async with self._async_session_scope() as session:
            session.add(question_to_bank_record(question))
            await session.flush()
        logger.debug(f"Stored bank question {question.id} for course {question.course_id}")
        return question

    async def add_assessment(self, assessment: Assessment, questions: List[Question]) -> Assessment:
        """
        Store an assessment together with its questions.

        Args:
            assessment: The assessment to store
            questions: Its questions, each carrying ``assessment_id``

        Returns:
            The stored assessment
        """
        async with self._async_session_scope() as session:
            session.add(AssessmentRecord.from_domain(assessment))
            await session.flush()
            for question in questions:
                session.add(question_to_record(question))
            await session.flush()
        return assessment


class SqlEnrollmentDirectory(BaseSqlRepository, EnrollmentDirectory):
    """Enrollment lookups against the ``enrollments`` table."""

    domain_type = "enrollment"

    async def find_enrollment(self, student_id: str, course_id: str) -> Optional[str]:
        async with self._async_session_scope() as session:
            stmt = select(EnrollmentRecord.id).where(
                EnrollmentRecord.student_id == student_id,
                EnrollmentRecord.course_id == course_id
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def add_enrollment(self, student_id: str, course_id: str) -> str:
        enrollment_id = new_id()
        async with self._async_session_scope() as session:
            session.add(EnrollmentRecord(id=enrollment_id, student_id=student_id, course_id=course_id))
            await session.flush()
        return enrollment_id


class SqlAttemptStore(BaseSqlRepository, AttemptStore):
    """Attempts and answers stored in SQL tables."""

    domain_type = "attempt"

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        async with self.database.transaction():
            yield

    async def create_attempt(self, attempt: StudentAttempt) -> StudentAttempt:
        async with self._async_session_scope() as session:
            session.add(StudentAttemptRecord.from_domain(attempt))
            await session.flush()
        return attempt

    async def get_attempt(self, attempt_id: str) -> Optional[StudentAttempt]:
        async with self._async_session_scope() as session:
            record = await session.get(StudentAttemptRecord, attempt_id, populate_existing=True)
            return record.to_domain() if record else None

    async def list_attempts(self, assessment_id: str, student_id: str) -> List[StudentAttempt]:
        async with self._async_session_scope() as session:
            stmt = (
                select(StudentAttemptRecord)
                .where(
                    StudentAttemptRecord.assessment_id == assessment_id,
                    StudentAttemptRecord.student_id == student_id
                )
                .order_by(StudentAttemptRecord.started_at.desc())
            )
            result = await session.execute(stmt)
            return [record.to_domain() for record in result.scalars().all()]

    async def list_answers(self, attempt_id: str) -> List[StudentAnswer]:
        async with self._async_session_scope() as session:
            return [record.to_domain() for record in await self._answers(session, attempt_id)]

    async def _answers(self, session: AsyncSession, attempt_id: str) -> List[StudentAnswerRecord]:
        stmt = (
            select(StudentAnswerRecord)
            .where(StudentAnswerRecord.attempt_id == attempt_id)
            .order_by(StudentAnswerRecord.created_at)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def _find_answer(
        self,
        session: AsyncSession,
        attempt_id: str,
        question_id: str
    ) -> Optional[StudentAnswerRecord]:
        stmt = select(StudentAnswerRecord).where(
            StudentAnswerRecord.attempt_id == attempt_id,
            StudentAnswerRecord.question_id == question_id
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def save_answer(self, answer: StudentAnswer) -> StudentAnswer:
        async with self._async_session_scope() as session:
            existing = await self._find_answer(session, answer.attempt_id, answer.question_id)
            if existing is not None:
                return existing.to_domain()
            try:
                async with session.begin_nested():
                    session.add(StudentAnswerRecord.from_domain(answer))
            except IntegrityError:
                # A concurrent writer inserted the same (attempt, question) first
                existing = await self._find_answer(session, answer.attempt_id, answer.question_id)
                if existing is None:
                    raise
                logger.info(f"Answer for question {answer.question_id} already stored for attempt {answer.attempt_id}")
                return existing.to_domain()
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
        async with self._async_session_scope() as session:
            stmt = (
                update(StudentAttemptRecord)
                .where(
                    StudentAttemptRecord.id == attempt_id,
                    StudentAttemptRecord.is_completed.is_(False)
                )
                .values(
                    is_completed=True,
                    submitted_at=submitted_at,
                    score=score,
                    total_points=total_points,
                    percentage=percentage,
                    time_taken_minutes=time_taken_minutes
                )
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                if await session.get(StudentAttemptRecord, attempt_id) is None:
                    raise NotFoundError("Attempt", attempt_id)
                raise AlreadyCompletedError(attempt_id)

            record = await session.get(StudentAttemptRecord, attempt_id, populate_existing=True)
            return record.to_domain()


class SqlTopicPerformanceStore(BaseSqlRepository, TopicPerformanceStore):
    """Topic performance counters in ``student_topic_performance``."""

    domain_type = "topic_performance"

    async def increment(
        self,
        student_id: str,
        topic_id: str,
        subtopic_id: Optional[str],
        is_correct: bool,
        attempted_at: datetime.datetime
    ) -> None:
        table = TopicPerformanceRecordORM
        subtopic_clause = (
            table.subtopic_id.is_(None) if subtopic_id is None else table.subtopic_id == subtopic_id
        )
        stmt = (
            update(table)
            .where(table.student_id == student_id, table.topic_id == topic_id, subtopic_clause)
            .values(
                attempts=table.attempts + 1,
                correct_answers=table.correct_answers + (1 if is_correct else 0),
                last_attempted_at=attempted_at
            )
            .execution_options(synchronize_session=False)
        )

        async with self._async_session_scope() as session:
            result = await session.execute(stmt)
            if result.rowcount:
                return
            try:
                async with session.begin_nested():
                    session.add(table(
                        student_id=student_id,
                        topic_id=topic_id,
                        subtopic_id=subtopic_id,
                        attempts=1,
                        correct_answers=1 if is_correct else 0,
                        last_attempted_at=attempted_at
                    ))
            except IntegrityError:
                # Lost the insert race; the row exists now
                await session.execute(stmt)

    async def list_records(
        self,
        student_id: str,
        topic_ids: Optional[List[str]] = None
    ) -> List[TopicPerformanceRecord]:
        table = TopicPerformanceRecordORM
        stmt = select(table).where(table.student_id == student_id)
        if topic_ids is not None:
            stmt = stmt.where(table.topic_id.in_(topic_ids))
        stmt = stmt.order_by(table.topic_id, table.id)

        async with self._async_session_scope() as session:
            result = await session.execute(stmt)
            return [record.to_domain() for record in result.scalars().all()]


class SqlRepositories:
    """The four SQL repositories built over one shared database."""

    def __init__(self, session_factory: async_sessionmaker):
        self.database = SqlDatabase(session_factory)
        self.questions = SqlQuestionRepository(self.database)
        self.enrollments = SqlEnrollmentDirectory(self.database)
        self.attempts = SqlAttemptStore(self.database)
        self.topic_performance = SqlTopicPerformanceStore(self.database)
