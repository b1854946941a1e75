"""
Assessment Engine Models

This module defines the domain records used by the adaptive assessment engine:
assessments, questions and bank entries with their options, student attempts
and answers, topic performance counters, the tagged answer payloads and the
result records returned by the lifecycle manager.
"""

import uuid
import enum
import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import ClassVar, Dict, List, Any, Optional, FrozenSet, Union
from dataclasses import dataclass, field

from lms_backend.common.error_handling import ValidationError
from lms_backend.common.serialization import SerializableMixin


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp, the form stored by every backend."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class QuestionType(enum.Enum):
    """Kinds of question the engine can grade."""
    MCQ = "MCQ"
    MSQ = "MSQ"
    SUBJECTIVE = "SUBJECTIVE"


class Difficulty(enum.Enum):
    """Difficulty levels used by the adaptive ratchet."""
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"

    def harder(self) -> 'Difficulty':
        """One step up; HARD stays HARD."""
        return {
            Difficulty.EASY: Difficulty.MEDIUM,
            Difficulty.MEDIUM: Difficulty.HARD,
            Difficulty.HARD: Difficulty.HARD
        }[self]

    def easier(self) -> 'Difficulty':
        """One step down; EASY stays EASY."""
        return {
            Difficulty.HARD: Difficulty.MEDIUM,
            Difficulty.MEDIUM: Difficulty.EASY,
            Difficulty.EASY: Difficulty.EASY
        }[self]


class BloomLevel(enum.Enum):
    """Bloom taxonomy cognitive level. Opaque to the engine's logic."""
    REMEMBER = "REMEMBER"
    UNDERSTAND = "UNDERSTAND"
    APPLY = "APPLY"
    ANALYZE = "ANALYZE"
    EVALUATE = "EVALUATE"
    CREATE = "CREATE"


class AttemptStatus(enum.Enum):
    """Lifecycle states of a student attempt."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def _parse_datetime(value: Any) -> Optional[datetime.datetime]:
    if value is None or isinstance(value, datetime.datetime):
        return value
    return datetime.datetime.fromisoformat(value)


def _parse_enum(enum_cls, value: Any):
    if value is None or isinstance(value, enum_cls):
        return value
    return enum_cls(str(value).upper())


@dataclass
class Assessment(SerializableMixin):
    """An instructor-authored assessment belonging to a course."""

    __serializable_fields__ = [
        "id", "course_id", "instructor_id", "title", "description",
        "is_published", "published_at", "total_questions", "mcq_count",
        "msq_count", "subjective_count", "time_limit_minutes", "passing_score",
        "created_at"
    ]

    id: str
    course_id: str
    instructor_id: str
    title: str
    description: Optional[str] = None
    is_published: bool = False
    published_at: Optional[datetime.datetime] = None
    total_questions: int = 0
    mcq_count: int = 0
    msq_count: int = 0
    subjective_count: int = 0
    time_limit_minutes: Optional[int] = None
    passing_score: Optional[float] = None
    created_at: datetime.datetime = field(default_factory=utcnow)

    def summary(self) -> Dict[str, Any]:
        """Summary returned when an attempt is started."""
        return {
            "id": self.id,
            "title": self.title,
            "total_questions": self.total_questions,
            "time_limit_minutes": self.time_limit_minutes
        }


@dataclass
class QuestionOption(SerializableMixin):
    """One labelled option of an MCQ or MSQ question."""

    __serializable_fields__ = ["id", "question_id", "option_label", "option_text", "is_correct"]

    id: str
    question_id: str
    option_label: str
    option_text: str
    is_correct: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'QuestionOption':
        return cls(
            id=data.get("id") or new_id(),
            question_id=data.get("question_id", ""),
            option_label=data["option_label"],
            option_text=data["option_text"],
            is_correct=bool(data.get("is_correct", False))
        )


@dataclass
class Question(SerializableMixin):
    """
    A gradable question.

    Assessment questions carry ``assessment_id`` and ``question_number``;
    question bank entries carry ``course_id`` instead. Both share the same
    grading fields and own zero or more options.
    """

    __serializable_fields__ = [
        "id", "question_type", "question_text", "points", "difficulty",
        "bloom_level", "topic_id", "subtopic_id", "explanation",
        "assessment_id", "question_number", "course_id", "options"
    ]

    id: str
    question_type: QuestionType
    question_text: str
    points: float = 1.0
    difficulty: Optional[Difficulty] = None
    bloom_level: Optional[BloomLevel] = None
    topic_id: Optional[str] = None
    subtopic_id: Optional[str] = None
    explanation: Optional[str] = None
    assessment_id: Optional[str] = None
    question_number: Optional[int] = None
    course_id: Optional[str] = None
    options: List[QuestionOption] = field(default_factory=list)
    created_at: datetime.datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.question_type = _parse_enum(QuestionType, self.question_type)
        self.difficulty = _parse_enum(Difficulty, self.difficulty)
        self.bloom_level = _parse_enum(BloomLevel, self.bloom_level)
        for option in self.options:
            if not option.question_id:
                option.question_id = self.id

    @property
    def is_bank_entry(self) -> bool:
        return self.assessment_id is None and self.course_id is not None

    @property
    def correct_option_ids(self) -> FrozenSet[str]:
        return frozenset(o.id for o in self.options if o.is_correct)

    def check_invariants(self) -> None:
        """
        Verify the option invariants for the question type.

        Raises:
            ValidationError: If the options do not fit the question type
        """
        labels = [o.option_label for o in self.options]
        if len(labels) != len(set(labels)):
            raise ValidationError(
                f"Question {self.id} has duplicate option labels",
                details={"question_id": self.id}
            )

        if self.question_type == QuestionType.MCQ:
            if len(self.correct_option_ids) != 1:
                raise ValidationError(
                    f"MCQ question {self.id} must have exactly one correct option",
                    details={"question_id": self.id}
                )
        elif self.question_type == QuestionType.MSQ:
            if len(self.correct_option_ids) < 2:
                raise ValidationError(
                    f"MSQ question {self.id} must have at least two correct options",
                    details={"question_id": self.id}
                )
        elif self.options:
            raise ValidationError(
                f"Subjective question {self.id} cannot have options",
                details={"question_id": self.id}
            )

    def to_public_dict(self) -> Dict[str, Any]:
        """Question as shown to a student, without correctness flags."""
        data = self.to_dict()
        data["options"] = [
            {"id": o.id, "option_label": o.option_label, "option_text": o.option_text}
            for o in sorted(self.options, key=lambda o: o.option_label)
        ]
        data.pop("explanation", None)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Question':
        """
        Create a question from dictionary data.

        Args:
            data: Dictionary containing question data

        Returns:
            New question instance
        """
        question_id = data.get("id") or new_id()
        options = [
            o if isinstance(o, QuestionOption) else QuestionOption.from_dict({**o, "question_id": question_id})
            for o in data.get("options", [])
        ]
        return cls(
            id=question_id,
            question_type=data["question_type"],
            question_text=data["question_text"],
            points=float(data.get("points", 1.0)),
            difficulty=data.get("difficulty"),
            bloom_level=data.get("bloom_level"),
            topic_id=data.get("topic_id"),
            subtopic_id=data.get("subtopic_id"),
            explanation=data.get("explanation"),
            assessment_id=data.get("assessment_id"),
            question_number=data.get("question_number"),
            course_id=data.get("course_id"),
            options=options
        )


@dataclass
class QuestionFilters:
    """Optional filters applied when listing bank entries."""

    question_type: Optional[QuestionType] = None
    topic_id: Optional[str] = None
    subtopic_id: Optional[str] = None
    difficulty: Optional[Difficulty] = None
    bloom_level: Optional[BloomLevel] = None

    def __post_init__(self):
        self.question_type = _parse_enum(QuestionType, self.question_type)
        self.difficulty = _parse_enum(Difficulty, self.difficulty)
        self.bloom_level = _parse_enum(BloomLevel, self.bloom_level)

    def matches(self, question: Question) -> bool:
        if self.question_type is not None and question.question_type != self.question_type:
            return False
        if self.topic_id is not None and question.topic_id != self.topic_id:
            return False
        if self.subtopic_id is not None and question.subtopic_id != self.subtopic_id:
            return False
        if self.difficulty is not None and question.difficulty != self.difficulty:
            return False
        if self.bloom_level is not None and question.bloom_level != self.bloom_level:
            return False
        return True

    def with_difficulty(self, difficulty: Optional[Difficulty]) -> 'QuestionFilters':
        return QuestionFilters(
            question_type=self.question_type,
            topic_id=self.topic_id,
            subtopic_id=self.subtopic_id,
            difficulty=difficulty,
            bloom_level=self.bloom_level
        )


# Answer payloads. Each variant carries the question type it may answer.

@dataclass(frozen=True)
class MCQAnswer:
    selected_option_ids: FrozenSet[str]
    question_type: ClassVar[QuestionType] = QuestionType.MCQ

    def __post_init__(self):
        object.__setattr__(self, "selected_option_ids", frozenset(self.selected_option_ids))

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.question_type.value, "selected_option_ids": sorted(self.selected_option_ids)}


@dataclass(frozen=True)
class MSQAnswer:
    selected_option_ids: FrozenSet[str]
    question_type: ClassVar[QuestionType] = QuestionType.MSQ

    def __post_init__(self):
        object.__setattr__(self, "selected_option_ids", frozenset(self.selected_option_ids))

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.question_type.value, "selected_option_ids": sorted(self.selected_option_ids)}


@dataclass(frozen=True)
class SubjectiveAnswer:
    text: str
    question_type: ClassVar[QuestionType] = QuestionType.SUBJECTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.question_type.value, "text": self.text}


AnswerPayload = Union[MCQAnswer, MSQAnswer, SubjectiveAnswer]


def answer_for_question(
    question_type: QuestionType,
    selected_option_ids: Optional[List[str]] = None,
    text_answer: Optional[str] = None
) -> AnswerPayload:
    """
    Build the answer variant matching a question type from loose fields.

    Raises:
        ValidationError: If the fields required by the type are missing
    """
    if question_type == QuestionType.SUBJECTIVE:
        if text_answer is None:
            raise ValidationError("Subjective answers require answer text")
        return SubjectiveAnswer(text_answer)

    if selected_option_ids is None:
        raise ValidationError(f"{question_type.value} answers require selected option ids")
    if question_type == QuestionType.MCQ:
        return MCQAnswer(selected_option_ids)
    return MSQAnswer(selected_option_ids)


@dataclass
class AnswerSubmission:
    """One entry of a batch submission."""

    question_id: str
    answer: AnswerPayload
    time_taken_seconds: Optional[int] = None


@dataclass
class AnswerEvaluation(SerializableMixin):
    """
    Evaluation of one submitted answer.

    ``is_correct`` is None while the decision is pending deferred grading.
    """

    __serializable_fields__ = ["is_correct", "points_earned", "is_pending", "feedback"]

    is_correct: Optional[bool]
    points_earned: float
    feedback: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.is_correct is None


@dataclass
class StudentAttempt(SerializableMixin):
    """A student's run through an assessment."""

    __serializable_fields__ = [
        "id", "assessment_id", "student_id", "enrollment_id", "started_at",
        "submitted_at", "is_completed", "status", "score", "total_points",
        "percentage", "time_taken_minutes"
    ]

    id: str
    assessment_id: str
    student_id: str
    enrollment_id: str
    started_at: datetime.datetime = field(default_factory=utcnow)
    submitted_at: Optional[datetime.datetime] = None
    is_completed: bool = False
    score: Optional[float] = None
    total_points: Optional[float] = None
    percentage: Optional[int] = None
    time_taken_minutes: Optional[int] = None

    def __post_init__(self):
        self.started_at = _parse_datetime(self.started_at)
        self.submitted_at = _parse_datetime(self.submitted_at)

    @property
    def status(self) -> AttemptStatus:
        return AttemptStatus.COMPLETED if self.is_completed else AttemptStatus.IN_PROGRESS


@dataclass
class StudentAnswer(SerializableMixin):
    """A stored answer. One per (attempt, question)."""

    __serializable_fields__ = [
        "id", "attempt_id", "question_id", "selected_option_ids", "text_answer",
        "is_correct", "points_earned", "feedback", "time_taken_seconds", "created_at"
    ]

    id: str
    attempt_id: str
    question_id: str
    selected_option_ids: Optional[List[str]] = None
    text_answer: Optional[str] = None
    is_correct: Optional[bool] = None
    points_earned: float = 0.0
    feedback: Optional[str] = None
    time_taken_seconds: Optional[int] = None
    created_at: datetime.datetime = field(default_factory=utcnow)

    @property
    def is_pending(self) -> bool:
        return self.is_correct is None

    @classmethod
    def from_evaluation(
        cls,
        attempt_id: str,
        question_id: str,
        answer: AnswerPayload,
        evaluation: AnswerEvaluation,
        time_taken_seconds: Optional[int] = None
    ) -> 'StudentAnswer':
        """Build the stored record for an evaluated answer."""
        if isinstance(answer, SubjectiveAnswer):
            selected, text_answer = None, answer.text
        else:
            selected, text_answer = sorted(answer.selected_option_ids), None
        return cls(
            id=new_id(),
            attempt_id=attempt_id,
            question_id=question_id,
            selected_option_ids=selected,
            text_answer=text_answer,
            is_correct=evaluation.is_correct,
            points_earned=evaluation.points_earned,
            feedback=evaluation.feedback,
            time_taken_seconds=time_taken_seconds
        )

    def evaluation(self) -> AnswerEvaluation:
        return AnswerEvaluation(
            is_correct=self.is_correct,
            points_earned=self.points_earned,
            feedback=self.feedback
        )


def format_accuracy(attempts: int, correct_answers: int) -> str:
    """Accuracy percentage with one decimal, or "0" with no attempts."""
    if attempts <= 0:
        return "0"
    accuracy = Decimal(correct_answers * 100) / Decimal(attempts)
    return str(accuracy.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


@dataclass
class TopicPerformanceRecord(SerializableMixin):
    """Counters for one (student, topic, subtopic) bucket."""

    __serializable_fields__ = [
        "student_id", "topic_id", "subtopic_id", "attempts",
        "correct_answers", "accuracy", "last_attempted_at"
    ]

    student_id: str
    topic_id: str
    subtopic_id: Optional[str] = None
    attempts: int = 0
    correct_answers: int = 0
    last_attempted_at: Optional[datetime.datetime] = None

    @property
    def accuracy(self) -> str:
        return format_accuracy(self.attempts, self.correct_answers)


@dataclass
class Enrollment:
    id: str
    student_id: str
    course_id: str
    enrolled_at: datetime.datetime = field(default_factory=utcnow)


# Result records returned by the lifecycle manager

@dataclass
class StartResult(SerializableMixin):
    __serializable_fields__ = ["attempt_id", "assessment"]

    attempt_id: str
    assessment: Dict[str, Any]


@dataclass
class QuestionResult(SerializableMixin):
    """Per-question detail of a graded answer."""

    __serializable_fields__ = ["question_id", "is_correct", "points_earned", "points", "is_pending", "feedback"]

    question_id: str
    is_correct: Optional[bool]
    points_earned: float
    points: float
    feedback: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.is_correct is None


@dataclass
class ResultSummary(SerializableMixin):
    __serializable_fields__ = ["correct_count", "answered_count", "pending_count", "total_questions"]

    correct_count: int
    answered_count: int
    pending_count: int = 0
    total_questions: int = 0

    @classmethod
    def from_answers(cls, answers: List[StudentAnswer], total_questions: int = 0) -> 'ResultSummary':
        return cls(
            correct_count=sum(1 for a in answers if a.is_correct is True),
            answered_count=len(answers),
            pending_count=sum(1 for a in answers if a.is_pending),
            total_questions=total_questions
        )


@dataclass
class BatchResult(SerializableMixin):
    __serializable_fields__ = ["attempt", "results", "summary"]

    attempt: StudentAttempt
    results: List[QuestionResult]
    summary: ResultSummary


@dataclass
class AdvanceResult(SerializableMixin):
    """Outcome of submitting one answer in the adaptive flow."""

    __serializable_fields__ = [
        "question_id", "is_correct", "points_earned", "is_pending_evaluation",
        "already_answered", "is_complete", "next_question", "attempt"
    ]

    question_id: str
    is_correct: Optional[bool]
    points_earned: float
    is_pending_evaluation: bool
    is_complete: bool
    next_question: Optional[Question] = None
    attempt: Optional[StudentAttempt] = None
    already_answered: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["next_question"] = self.next_question.to_public_dict() if self.next_question else None
        return data


@dataclass
class NextQuestionResult(SerializableMixin):
    __serializable_fields__ = ["is_complete", "question"]

    is_complete: bool
    question: Optional[Question] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_complete": self.is_complete,
            "question": self.question.to_public_dict() if self.question else None
        }


@dataclass
class AttemptDetails(SerializableMixin):
    """Attempt with its answers and the assessment's questions."""

    __serializable_fields__ = ["attempt", "answers", "questions", "summary"]

    attempt: StudentAttempt
    answers: List[StudentAnswer]
    questions: List[Question]
    summary: ResultSummary

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        # Correctness is only revealed once the attempt is completed
        if not self.attempt.is_completed:
            data["questions"] = [q.to_public_dict() for q in self.questions]
        return data


@dataclass
class TopicAccuracy(SerializableMixin):
    """Course-level accuracy row for one topic."""

    __serializable_fields__ = ["topic_id", "topic_name", "attempts", "correct_answers", "accuracy"]

    topic_id: str
    topic_name: Optional[str] = None
    attempts: int = 0
    correct_answers: int = 0

    @property
    def accuracy(self) -> str:
        return format_accuracy(self.attempts, self.correct_answers)


__all__ = [
    "utcnow", "new_id",
    "QuestionType", "Difficulty", "BloomLevel", "AttemptStatus",
    "Assessment", "QuestionOption", "Question", "QuestionFilters",
    "MCQAnswer", "MSQAnswer", "SubjectiveAnswer", "AnswerPayload", "answer_for_question",
    "AnswerSubmission", "AnswerEvaluation", "StudentAttempt", "StudentAnswer",
    "TopicPerformanceRecord", "Enrollment", "format_accuracy",
    "StartResult", "QuestionResult", "ResultSummary", "BatchResult",
    "AdvanceResult", "NextQuestionResult", "AttemptDetails", "TopicAccuracy"
]
