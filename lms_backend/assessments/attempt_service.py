"""
Attempt Lifecycle Service

This module implements the state machine of a student's attempt at an
assessment: ``NotStarted -> InProgress -> Completed``. It orchestrates the
answer evaluator, the adaptive selector and the topic performance tracker,
and writes the aggregate result through a guarded finalize step.

Two submission modes are supported:
1. Bulk mode: every answer is submitted at once and the attempt completes
2. Adaptive mode: answers are submitted one by one and the next bank question
   is chosen from the previous result until the pool is exhausted
"""

import math
import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set

from lms_backend.common.logger import app_logger, LoggerAdapter
from lms_backend.common.error_handling import (
    AlreadyCompletedError,
    EnrollmentError,
    ForbiddenError,
    NotFoundError,
    ValidationError
)
from lms_backend.common.performance.tracker import TopicPerformanceTracker
from lms_backend.assessments.models import (
    AdvanceResult,
    AnswerPayload,
    AnswerSubmission,
    Assessment,
    AttemptDetails,
    BatchResult,
    MCQAnswer,
    MSQAnswer,
    NextQuestionResult,
    Question,
    QuestionFilters,
    QuestionResult,
    ResultSummary,
    StartResult,
    StudentAnswer,
    StudentAttempt,
    SubjectiveAnswer,
    new_id,
    utcnow
)
from lms_backend.assessments.repositories import (
    AttemptStore,
    EnrollmentDirectory,
    QuestionRepository
)
from lms_backend.assessments.answer_evaluation import AnswerEvaluator
from lms_backend.assessments.question_selection import AdaptiveQuestionSelector

# Module logger
logger = app_logger.getChild("attempt_service")

_ANSWER_VARIANTS = (MCQAnswer, MSQAnswer, SubjectiveAnswer)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


def compute_percentage(score: float, total_points: float) -> int:
    """Percentage of ``total_points`` earned, 0 when there are no points."""
    if total_points <= 0:
        return 0
    return round_half_up(score / total_points * 100)


def minutes_between(start: datetime.datetime, end: datetime.datetime) -> int:
    return max(0, round_half_up((end - start).total_seconds() / 60))


class AttemptLifecycleManager:
    """
    Manages student attempts from start to completion.

    Args:
        questions: Question repository (assessment questions and bank)
        attempts: Persistence handle for attempts and answers
        enrollments: Enrollment lookups
        tracker: Topic performance tracker
        evaluator: Answer evaluator; heuristic subjective grading by default
        selector: Adaptive selector; built over ``questions`` by default
        clock: Source of the current (naive UTC) time
    """

    def __init__(
        self,
        questions: QuestionRepository,
        attempts: AttemptStore,
        enrollments: EnrollmentDirectory,
        tracker: TopicPerformanceTracker,
        evaluator: Optional[AnswerEvaluator] = None,
        selector: Optional[AdaptiveQuestionSelector] = None,
        clock: Callable[[], datetime.datetime] = utcnow
    ):
        self.questions = questions
        self.attempts = attempts
        self.enrollments = enrollments
        self.tracker = tracker
        self.evaluator = evaluator or AnswerEvaluator()
        self.selector = selector or AdaptiveQuestionSelector(questions)
        self.clock = clock

    # Lookups

    async def _load_assessment(self, assessment_id: str) -> Assessment:
        assessment = await self.questions.get_assessment(assessment_id)
        if assessment is None:
            raise NotFoundError("Assessment", assessment_id)
        return assessment

    async def _load_attempt(
        self,
        attempt_id: str,
        student_id: Optional[str] = None,
        assessment_id: Optional[str] = None
    ) -> StudentAttempt:
        attempt = await self.attempts.get_attempt(attempt_id)
        if attempt is None:
            raise NotFoundError("Attempt", attempt_id)
        if student_id is not None and attempt.student_id != student_id:
            raise ForbiddenError(
                "Access denied: attempt belongs to another student",
                details={"attempt_id": attempt_id}
            )
        if assessment_id is not None and attempt.assessment_id != assessment_id:
            raise ValidationError(
                "Attempt does not belong to this assessment",
                details={"attempt_id": attempt_id, "assessment_id": assessment_id}
            )
        return attempt

    @staticmethod
    def _ensure_in_progress(attempt: StudentAttempt) -> None:
        if attempt.is_completed:
            raise AlreadyCompletedError(attempt.id)

    async def open_attempt(
        self,
        attempt_id: str,
        student_id: Optional[str] = None,
        assessment_id: Optional[str] = None
    ) -> StudentAttempt:
        """The caller's attempt, provided it can still take answers."""
        attempt = await self._load_attempt(attempt_id, student_id, assessment_id)
        self._ensure_in_progress(attempt)
        return attempt

    # Operations

    async def start(self, assessment_id: str, student_id: str) -> StartResult:
        """
        Start a new attempt.

        Args:
            assessment_id: Assessment to attempt
            student_id: Student starting the attempt

        Returns:
            The new attempt id and the assessment summary

        Raises:
            NotFoundError: If the assessment does not exist
            ForbiddenError: If the assessment is not published
            EnrollmentError: If the student is not enrolled in its course
        """
        assessment = await self._load_assessment(assessment_id)
        if not assessment.is_published:
            raise ForbiddenError(
                "Assessment is not published",
                details={"assessment_id": assessment_id}
            )

        enrollment_id = await self.enrollments.find_enrollment(student_id, assessment.course_id)
        if enrollment_id is None:
            raise EnrollmentError(student_id, assessment.course_id)

        attempt = StudentAttempt(
            id=new_id(),
            assessment_id=assessment.id,
            student_id=student_id,
            enrollment_id=enrollment_id,
            started_at=self.clock()
        )
        await self.attempts.create_attempt(attempt)

        LoggerAdapter(logger, {"attempt_id": attempt.id, "student_id": student_id}).info(
            f"Started attempt {attempt.id} on assessment {assessment.id}"
        )
        return StartResult(attempt_id=attempt.id, assessment=assessment.summary())

    def _validate_batch(self, answers: Iterable[AnswerSubmission]) -> List[AnswerSubmission]:
        answers = list(answers)
        seen: Set[str] = set()
        for submission in answers:
            if not submission.question_id:
                raise ValidationError("Question ID is required for every answer")
            if not isinstance(submission.answer, _ANSWER_VARIANTS):
                raise ValidationError(
                    f"Malformed answer for question {submission.question_id}",
                    details={"question_id": submission.question_id}
                )
            if submission.question_id in seen:
                raise ValidationError(
                    f"Question {submission.question_id} is answered more than once",
                    details={"question_id": submission.question_id}
                )
            seen.add(submission.question_id)
        return answers

    async def _store_answer(
        self,
        attempt: StudentAttempt,
        question: Question,
        candidate: StudentAnswer
    ) -> StudentAnswer:
        """Persist an evaluated answer and count it toward topic performance."""
        stored = await self.attempts.save_answer(candidate)
        if stored.id != candidate.id:
            logger.info(f"Question {question.id} already answered in attempt {attempt.id}; keeping stored answer")
            return stored

        if question.topic_id and not stored.is_pending:
            await self.tracker.record_result(
                attempt.student_id,
                question.topic_id,
                question.subtopic_id,
                bool(stored.is_correct),
                stored.created_at
            )
        return stored

    async def _finalize(self, attempt: StudentAttempt, score: float, total_points: float) -> StudentAttempt:
        submitted_at = self.clock()
        finalized = await self.attempts.finalize_attempt(
            attempt.id,
            score=score,
            total_points=total_points,
            percentage=compute_percentage(score, total_points),
            time_taken_minutes=minutes_between(attempt.started_at, submitted_at),
            submitted_at=submitted_at
        )
        LoggerAdapter(logger, {"attempt_id": attempt.id, "student_id": attempt.student_id}).info(
            f"Completed attempt {attempt.id}: score={finalized.score}/{finalized.total_points} "
            f"({finalized.percentage}%)"
        )
        return finalized

    async def submit_batch(
        self,
        attempt_id: str,
        answers: Iterable[AnswerSubmission],
        student_id: Optional[str] = None,
        assessment_id: Optional[str] = None
    ) -> BatchResult:
        """
        Submit every answer of an attempt at once and complete it.

        Answers already stored for a question are kept. Score is the sum of
        points earned on the assessment's questions; total points is the sum
        of all its question points.

        Args:
            attempt_id: Attempt being submitted
            answers: One submission per question
            student_id: Caller; ownership is checked when given
            assessment_id: Assessment named by the caller; must match the attempt

        Returns:
            The completed attempt, per-question results and a summary

        Raises:
            ValidationError: If the payload is malformed
            NotFoundError: If the attempt, assessment or a question is missing
            ForbiddenError: If the caller does not own the attempt
            AlreadyCompletedError: If the attempt is already completed
        """
        attempt = await self.open_attempt(attempt_id, student_id, assessment_id)
        answers = self._validate_batch(answers)
        assessment = await self._load_assessment(attempt.assessment_id)

        questions = await self.questions.get_assessment_questions(assessment.id)
        by_id: Dict[str, Question] = {q.id: q for q in questions}

        # Evaluate everything before writing anything
        evaluated = []
        for submission in answers:
            question = by_id.get(submission.question_id)
            if question is None:
                raise NotFoundError("Question", submission.question_id)
            evaluation = self.evaluator.evaluate(question, submission.answer)
            candidate = StudentAnswer.from_evaluation(
                attempt.id, question.id, submission.answer, evaluation, submission.time_taken_seconds
            )
            evaluated.append((question, candidate))

        async with self.attempts.transaction():
            results = []
            for question, candidate in evaluated:
                stored = await self._store_answer(attempt, question, candidate)
                results.append(QuestionResult(
                    question_id=question.id,
                    is_correct=stored.is_correct,
                    points_earned=stored.points_earned,
                    points=question.points,
                    feedback=stored.feedback
                ))

            stored_answers = [a for a in await self.attempts.list_answers(attempt.id) if a.question_id in by_id]
            score = sum(a.points_earned for a in stored_answers)
            total_points = sum(q.points for q in questions)
            finalized = await self._finalize(attempt, score, total_points)

        return BatchResult(
            attempt=finalized,
            results=results,
            summary=ResultSummary.from_answers(stored_answers, len(questions))
        )

    async def submit_one_and_advance(
        self,
        attempt_id: str,
        question_id: str,
        answer: AnswerPayload,
        student_id: Optional[str] = None,
        filters: Optional[QuestionFilters] = None,
        time_taken_seconds: Optional[int] = None,
        assessment_id: Optional[str] = None
    ) -> AdvanceResult:
        """
        Submit one answer in the adaptive flow and pick the next question.

        Submitting again for an answered question returns the stored result.
        When the bank has no question left the attempt is completed, with
        total points summed over the questions answered in the attempt.

        Args:
            attempt_id: Attempt being answered
            question_id: Question being answered
            answer: The tagged answer payload
            student_id: Caller; ownership is checked when given
            filters: Type/topic/subtopic/bloom filters for the next draw
            time_taken_seconds: Time the student spent on the question
            assessment_id: Assessment named by the caller; must match the attempt

        Returns:
            The answer's result with the next question, or the completed attempt

        Raises:
            ValidationError: If the question id is missing or the answer does
                not fit the question type
            NotFoundError: If the attempt, assessment or question is missing
            ForbiddenError: If the caller does not own the attempt
            AlreadyCompletedError: If the attempt is already completed
        """
        attempt = await self.open_attempt(attempt_id, student_id, assessment_id)
        if not question_id:
            raise ValidationError("Question ID is required")
        if not isinstance(answer, _ANSWER_VARIANTS):
            raise ValidationError(
                f"Malformed answer for question {question_id}",
                details={"question_id": question_id}
            )

        assessment = await self._load_assessment(attempt.assessment_id)

        question = await self.questions.get_question(question_id)
        if question is None:
            raise NotFoundError("Question", question_id)

        correct_option_ids = await self.questions.get_correct_option_ids(question_id)
        evaluation = self.evaluator.evaluate(question, answer, correct_option_ids)
        candidate = StudentAnswer.from_evaluation(attempt.id, question.id, answer, evaluation, time_taken_seconds)

        async with self.attempts.transaction():
            stored = await self._store_answer(attempt, question, candidate)
            answers = await self.attempts.list_answers(attempt.id)
            asked = {a.question_id for a in answers}

            next_question = await self.selector.select_next(
                assessment.course_id,
                question.difficulty,
                stored.is_correct is True,
                filters,
                asked
            )

            finalized = None
            if next_question is None:
                total_points = 0.0
                for answered in answers:
                    if answered.question_id == question.id:
                        answered_question = question
                    else:
                        answered_question = await self.questions.get_question(answered.question_id)
                    if answered_question is not None:
                        total_points += answered_question.points
                score = sum(a.points_earned for a in answers)
                finalized = await self._finalize(attempt, score, total_points)

        return AdvanceResult(
            question_id=question.id,
            is_correct=stored.is_correct,
            points_earned=stored.points_earned,
            is_pending_evaluation=stored.is_pending,
            is_complete=finalized is not None,
            next_question=next_question,
            attempt=finalized,
            already_answered=stored.id != candidate.id
        )

    async def next_question(
        self,
        attempt_id: str,
        student_id: Optional[str] = None,
        filters: Optional[QuestionFilters] = None,
        assessment_id: Optional[str] = None
    ) -> NextQuestionResult:
        """
        Return the question to show next without answering anything.

        The first question is drawn from the whole filtered pool; later ones
        follow the ratchet from the latest answer. A pending latest answer
        counts as not correct.

        Raises:
            NotFoundError: If the attempt or assessment is missing
            ForbiddenError: If the caller does not own the attempt
        """
        attempt = await self._load_attempt(attempt_id, student_id, assessment_id)
        if attempt.is_completed:
            return NextQuestionResult(is_complete=True)
        assessment = await self._load_assessment(attempt.assessment_id)

        answers = await self.attempts.list_answers(attempt.id)
        asked = {a.question_id for a in answers}

        if not answers:
            question = await self.selector.select_first(assessment.course_id, filters, asked)
        else:
            latest = answers[-1]
            latest_question = await self.questions.get_question(latest.question_id)
            question = await self.selector.select_next(
                assessment.course_id,
                latest_question.difficulty if latest_question else None,
                latest.is_correct is True,
                filters,
                asked
            )

        return NextQuestionResult(is_complete=question is None, question=question)

    async def get_attempt(
        self,
        attempt_id: str,
        student_id: str,
        assessment_id: Optional[str] = None
    ) -> AttemptDetails:
        """
        Return an attempt with its answers and questions for results display.

        Questions are the assessment's questions followed by any other
        (bank) question answered in the attempt.

        Raises:
            NotFoundError: If the attempt or assessment is missing
            ForbiddenError: If the attempt is not owned by ``student_id``
        """
        attempt = await self._load_attempt(attempt_id, student_id, assessment_id)
        assessment = await self._load_assessment(attempt.assessment_id)

        answers = await self.attempts.list_answers(attempt.id)
        questions = await self.questions.get_assessment_questions(assessment.id)
        known = {q.id for q in questions}
        for answer in answers:
            if answer.question_id not in known:
                question = await self.questions.get_question(answer.question_id)
                if question is not None:
                    questions.append(question)
                    known.add(question.id)

        return AttemptDetails(
            attempt=attempt,
            answers=answers,
            questions=questions,
            summary=ResultSummary.from_answers(answers, assessment.total_questions or len(questions))
        )

    async def list_attempts(self, assessment_id: str, student_id: str) -> List[StudentAttempt]:
        """
        The student's attempts at an assessment, newest first.

        Raises:
            NotFoundError: If the assessment does not exist
        """
        await self._load_assessment(assessment_id)
        return await self.attempts.list_attempts(assessment_id, student_id)
