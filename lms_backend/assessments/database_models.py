"""
SQLAlchemy ORM models for the adaptive assessment engine.

This module defines the database models for the engine, including:
- AssessmentRecord: An instructor-authored assessment
- QuestionRecord / QuestionOptionRecord: Assessment-scoped questions and options
- QuestionBankRecord / QuestionBankOptionRecord: Course-scoped reusable questions
- EnrollmentRecord: Link between a student and a course
- StudentAttemptRecord: One student's run through an assessment
- StudentAnswerRecord: An answer stored for an attempt
- TopicPerformanceRecordORM: Per-student topic/subtopic counters
"""

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Text, Float, ForeignKey, JSON, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.schema import UniqueConstraint

from lms_backend.database.base import ModelBase
from lms_backend.assessments.models import (
    Assessment, Question, QuestionOption, StudentAttempt, StudentAnswer,
    TopicPerformanceRecord, utcnow
)


class AssessmentRecord(ModelBase):
    """Model for assessments."""
    __tablename__ = 'assessments'

    id = Column(String(36), primary_key=True)
    course_id = Column(String(36), nullable=False, index=True)
    instructor_id = Column(String(36), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_published = Column(Boolean, nullable=False, default=False)
    published_at = Column(DateTime, nullable=True)
    total_questions = Column(Integer, nullable=False, default=0)
    mcq_count = Column(Integer, nullable=False, default=0)
    msq_count = Column(Integer, nullable=False, default=0)
    subjective_count = Column(Integer, nullable=False, default=0)
    time_limit_minutes = Column(Integer, nullable=True)
    passing_score = Column(Float, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    questions = relationship(
        "QuestionRecord", back_populates="assessment",
        cascade="all, delete-orphan", order_by="QuestionRecord.question_number"
    )

    def to_domain(self) -> Assessment:
        return Assessment(**self.to_dict())

    @classmethod
    def from_domain(cls, assessment: Assessment) -> 'AssessmentRecord':
        return cls.from_dict(vars(assessment))


class QuestionRecord(ModelBase):
    """Model for assessment-scoped questions."""
    __tablename__ = 'questions'

    id = Column(String(36), primary_key=True)
    assessment_id = Column(String(36), ForeignKey('assessments.id', ondelete='CASCADE'), nullable=False)
    question_number = Column(Integer, nullable=False)
    question_type = Column(String(20), nullable=False)
    question_text = Column(Text, nullable=False)
    points = Column(Float, nullable=False, default=1.0)
    difficulty = Column(String(20), nullable=True)
    bloom_level = Column(String(20), nullable=True)
    topic_id = Column(String(36), nullable=True)
    subtopic_id = Column(String(36), nullable=True)
    explanation = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    assessment = relationship("AssessmentRecord", back_populates="questions")
    options = relationship(
        "QuestionOptionRecord", back_populates="question",
        cascade="all, delete-orphan", order_by="QuestionOptionRecord.option_label",
        lazy="selectin"
    )

    __table_args__ = (
        Index('idx_questions_assessment', assessment_id, question_number),
    )

    def to_domain(self) -> Question:
        return Question(
            id=self.id,
            question_type=self.question_type,
            question_text=self.question_text,
            points=self.points,
            difficulty=self.difficulty,
            bloom_level=self.bloom_level,
            topic_id=self.topic_id,
            subtopic_id=self.subtopic_id,
            explanation=self.explanation,
            assessment_id=self.assessment_id,
            question_number=self.question_number,
            options=[option.to_domain() for option in self.options],
            created_at=self.created_at
        )


class QuestionOptionRecord(ModelBase):
    """Model for options of assessment questions."""
    __tablename__ = 'question_options'

    id = Column(String(36), primary_key=True)
    question_id = Column(String(36), ForeignKey('questions.id', ondelete='CASCADE'), nullable=False)
    option_label = Column(String(10), nullable=False)
    option_text = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)

    question = relationship("QuestionRecord", back_populates="options")

    __table_args__ = (
        UniqueConstraint('question_id', 'option_label', name='uq_question_options_question_label'),
    )

    def to_domain(self) -> QuestionOption:
        return QuestionOption(**self.to_dict())


class QuestionBankRecord(ModelBase):
    """Model for reusable course-scoped bank questions."""
    __tablename__ = 'question_bank'

    id = Column(String(36), primary_key=True)
    course_id = Column(String(36), nullable=False)
    question_type = Column(String(20), nullable=False)
    question_text = Column(Text, nullable=False)
    points = Column(Float, nullable=False, default=1.0)
    difficulty = Column(String(20), nullable=True)
    bloom_level = Column(String(20), nullable=True)
    topic_id = Column(String(36), nullable=True)
    subtopic_id = Column(String(36), nullable=True)
    explanation = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    options = relationship(
        "QuestionBankOptionRecord", back_populates="question",
        cascade="all, delete-orphan", order_by="QuestionBankOptionRecord.option_label",
        lazy="selectin"
    )

    __table_args__ = (
        Index('idx_question_bank_filters', course_id, difficulty, bloom_level, question_type),
    )

    def to_domain(self) -> Question:
        return Question(
            id=self.id,
            question_type=self.question_type,
            question_text=self.question_text,
            points=self.points,
            difficulty=self.difficulty,
            bloom_level=self.bloom_level,
            topic_id=self.topic_id,
            subtopic_id=self.subtopic_id,
            explanation=self.explanation,
            course_id=self.course_id,
            options=[option.to_domain() for option in self.options],
            created_at=self.created_at
        )


class QuestionBankOptionRecord(ModelBase):
    """Model for options of bank questions."""
    __tablename__ = 'question_bank_options'

    id = Column(String(36), primary_key=True)
    question_bank_id = Column(String(36), ForeignKey('question_bank.id', ondelete='CASCADE'), nullable=False)
    option_label = Column(String(10), nullable=False)
    option_text = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)

    question = relationship("QuestionBankRecord", back_populates="options")

    __table_args__ = (
        UniqueConstraint('question_bank_id', 'option_label', name='uq_question_bank_options_question_label'),
    )

    def to_domain(self) -> QuestionOption:
        return QuestionOption(
            id=self.id,
            question_id=self.question_bank_id,
            option_label=self.option_label,
            option_text=self.option_text,
            is_correct=self.is_correct
        )


class EnrollmentRecord(ModelBase):
    """Model for course enrollments."""
    __tablename__ = 'enrollments'

    id = Column(String(36), primary_key=True)
    student_id = Column(String(36), nullable=False)
    course_id = Column(String(36), nullable=False)
    enrolled_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint('student_id', 'course_id', name='uq_enrollments_student_course'),
    )


class StudentAttemptRecord(ModelBase):
    """Model for student attempts."""
    __tablename__ = 'student_attempts'

    id = Column(String(36), primary_key=True)
    assessment_id = Column(String(36), ForeignKey('assessments.id', ondelete='CASCADE'), nullable=False)
    student_id = Column(String(36), nullable=False)
    enrollment_id = Column(String(36), ForeignKey('enrollments.id', ondelete='CASCADE'), nullable=False)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    submitted_at = Column(DateTime, nullable=True)
    is_completed = Column(Boolean, nullable=False, default=False)
    score = Column(Float, nullable=True)
    total_points = Column(Float, nullable=True)
    percentage = Column(Integer, nullable=True)
    time_taken_minutes = Column(Integer, nullable=True)

    __table_args__ = (
        Index('idx_student_attempts_student_assessment', student_id, assessment_id),
    )

    def to_domain(self) -> StudentAttempt:
        return StudentAttempt(**self.to_dict())

    @classmethod
    def from_domain(cls, attempt: StudentAttempt) -> 'StudentAttemptRecord':
        return cls.from_dict(vars(attempt))


class StudentAnswerRecord(ModelBase):
    """
    Model for student answers.

    ``question_id`` may reference an assessment question or a bank entry,
    so it carries no foreign key.
    """
    __tablename__ = 'student_answers'

    id = Column(String(36), primary_key=True)
    attempt_id = Column(String(36), ForeignKey('student_attempts.id', ondelete='CASCADE'), nullable=False)
    question_id = Column(String(36), nullable=False)
    selected_option_ids = Column(JSON, nullable=True)
    text_answer = Column(Text, nullable=True)
    is_correct = Column(Boolean, nullable=True)
    points_earned = Column(Float, nullable=False, default=0.0)
    feedback = Column(Text, nullable=True)
    time_taken_seconds = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint('attempt_id', 'question_id', name='uq_student_answers_attempt_question'),
    )

    def to_domain(self) -> StudentAnswer:
        return StudentAnswer(**self.to_dict())

    @classmethod
    def from_domain(cls, answer: StudentAnswer) -> 'StudentAnswerRecord':
        return cls.from_dict(vars(answer))


class TopicPerformanceRecordORM(ModelBase):
    """Model for per-student topic/subtopic performance counters."""
    __tablename__ = 'student_topic_performance'

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(36), nullable=False)
    topic_id = Column(String(36), nullable=False)
    subtopic_id = Column(String(36), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    correct_answers = Column(Integer, nullable=False, default=0)
    last_attempted_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            'student_id', 'topic_id', 'subtopic_id',
            name='uq_student_topic_performance_student_topic_subtopic'
        ),
        Index(
            'uq_student_topic_performance_topic_level',
            student_id, topic_id,
            unique=True,
            postgresql_where=subtopic_id.is_(None),
            sqlite_where=subtopic_id.is_(None)
        ),
    )

    def to_domain(self) -> TopicPerformanceRecord:
        return TopicPerformanceRecord(
            student_id=self.student_id,
            topic_id=self.topic_id,
            subtopic_id=self.subtopic_id,
            attempts=self.attempts,
            correct_answers=self.correct_answers,
            last_attempted_at=self.last_attempted_at
        )


def question_to_record(question: Question) -> QuestionRecord:
    """Build an assessment question row (with options) from a domain question."""
    return QuestionRecord(
        id=question.id,
        assessment_id=question.assessment_id,
        question_number=question.question_number or 0,
        question_type=question.question_type.value,
        question_text=question.question_text,
        points=question.points,
        difficulty=question.difficulty.value if question.difficulty else None,
        bloom_level=question.bloom_level.value if question.bloom_level else None,
        topic_id=question.topic_id,
        subtopic_id=question.subtopic_id,
        explanation=question.explanation,
        created_at=question.created_at,
        options=[
            QuestionOptionRecord(
                id=o.id, option_label=o.option_label,
                option_text=o.option_text, is_correct=o.is_correct
            )
            for o in question.options
        ]
    )


def question_to_bank_record(question: Question) -> QuestionBankRecord:
    """Build a bank row (with options) from a domain question."""
    return QuestionBankRecord(
        id=question.id,
        course_id=question.course_id,
        question_type=question.question_type.value,
        question_text=question.question_text,
        points=question.points,
        difficulty=question.difficulty.value if question.difficulty else None,
        bloom_level=question.bloom_level.value if question.bloom_level else None,
        topic_id=question.topic_id,
        subtopic_id=question.subtopic_id,
        explanation=question.explanation,
        created_at=question.created_at,
        options=[
            QuestionBankOptionRecord(
                id=o.id, option_label=o.option_label,
                option_text=o.option_text, is_correct=o.is_correct
            )
            for o in question.options
        ]
    )
