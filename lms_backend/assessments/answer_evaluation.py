"""
Answer Evaluation for the Adaptive Assessment Engine

This module implements:
1. Exact-match grading of MCQ and MSQ answers against the correct option set
2. A swappable ``SubjectiveGrader`` strategy for free-text answers
3. The default heuristic subjective grader and a deferred grader that leaves
   the decision pending for later (human or semantic) grading

Evaluation is pure: nothing is persisted here.
"""

from abc import ABC, abstractmethod
from typing import AbstractSet, FrozenSet, Optional, Tuple

from lms_backend.common.logger import app_logger
from lms_backend.common.error_handling import ValidationError
from lms_backend.assessments.models import (
    AnswerEvaluation,
    AnswerPayload,
    MCQAnswer,
    MSQAnswer,
    Question,
    SubjectiveAnswer
)

# Module logger
logger = app_logger.getChild("answer_evaluation")

DEFAULT_MIN_SUBJECTIVE_LENGTH = 10

# Whole-answer non-answers, compared after trimming and lower-casing
EXACT_NON_ANSWERS: FrozenSet[str] = frozenset({"na", "n/a"})

# Non-answer fragments, matched as case-insensitive substrings
NON_ANSWER_TOKENS: Tuple[str, ...] = (
    "idk",
    "dont know",
    "don't know",
    "no idea",
    "blank",
    "nothing",
    "none",
)


def is_mcq_correct(selected: AbstractSet[str], correct: AbstractSet[str]) -> bool:
    """Exactly one option selected and it is a correct one."""
    return len(selected) == 1 and next(iter(selected)) in correct


def is_msq_correct(selected: AbstractSet[str], correct: AbstractSet[str]) -> bool:
    """Selected set equals the correct set; no partial credit."""
    return set(selected) == set(correct)


class SubjectiveGrader(ABC):
    """
    Strategy deciding correctness of a free-text answer.

    ``grade`` returns True or False, or None when the decision is deferred.
    """

    @abstractmethod
    def grade(self, question: Question, text: str) -> Optional[bool]:
        pass

    def feedback(self, question: Question, text: str, is_correct: Optional[bool]) -> Optional[str]:
        return None


class HeuristicSubjectiveGrader(SubjectiveGrader):
    """
    Length and non-answer heuristic.

    An answer is incorrect when it is empty, is exactly ``na``/``n/a``, is
    shorter than ``min_length`` once trimmed, or contains a non-answer token.
    Anything else is correct.
    """

    def __init__(self, min_length: int = DEFAULT_MIN_SUBJECTIVE_LENGTH):
        self.min_length = min_length

    def grade(self, question: Question, text: str) -> Optional[bool]:
        trimmed = (text or "").strip()
        if not trimmed:
            return False

        lowered = trimmed.lower()
        if lowered in EXACT_NON_ANSWERS:
            return False

        if len(trimmed) < self.min_length:
            return False

        if any(token in lowered for token in NON_ANSWER_TOKENS):
            return False

        return True

    def feedback(self, question: Question, text: str, is_correct: Optional[bool]) -> Optional[str]:
        if is_correct:
            return None
        trimmed = (text or "").strip()
        if not trimmed or trimmed.lower() in EXACT_NON_ANSWERS:
            return "No answer was provided."
        if len(trimmed) < self.min_length:
            return "The answer is too short to be evaluated."
        return "The answer does not address the question."


class DeferredSubjectiveGrader(SubjectiveGrader):
    """Leaves every subjective answer pending for later grading."""

    def grade(self, question: Question, text: str) -> Optional[bool]:
        return None

    def feedback(self, question: Question, text: str, is_correct: Optional[bool]) -> Optional[str]:
        return "Pending evaluation."


class AnswerEvaluator:
    """
    Decides correctness and points for one submitted answer.

    Args:
        subjective_grader: Strategy used for SUBJECTIVE questions
    """

    def __init__(self, subjective_grader: Optional[SubjectiveGrader] = None):
        self.subjective_grader = subjective_grader or HeuristicSubjectiveGrader()

    def evaluate(
        self,
        question: Question,
        answer: AnswerPayload,
        correct_option_ids: Optional[AbstractSet[str]] = None
    ) -> AnswerEvaluation:
        """
        Evaluate an answer against its question.

        Args:
            question: The question being answered
            answer: The tagged answer payload
            correct_option_ids: Correct option ids; taken from the question's
                options when omitted

        Returns:
            The evaluation; points are the question's points when correct,
            otherwise 0 (also 0 while pending)

        Raises:
            ValidationError: If the answer variant does not match the question type
        """
        if answer.question_type != question.question_type:
            raise ValidationError(
                f"Answer of type {answer.question_type.value} does not match "
                f"{question.question_type.value} question {question.id}",
                details={"question_id": question.id}
            )

        if correct_option_ids is None:
            correct_option_ids = question.correct_option_ids

        feedback = None
        if isinstance(answer, MCQAnswer):
            is_correct = is_mcq_correct(answer.selected_option_ids, correct_option_ids)
        elif isinstance(answer, MSQAnswer):
            is_correct = is_msq_correct(answer.selected_option_ids, correct_option_ids)
        elif isinstance(answer, SubjectiveAnswer):
            is_correct = self.subjective_grader.grade(question, answer.text)
            feedback = self.subjective_grader.feedback(question, answer.text, is_correct)
        else:
            raise ValidationError(f"Unsupported answer payload {type(answer).__name__}")

        points_earned = question.points if is_correct else 0.0
        logger.debug(
            f"Evaluated {question.question_type.value} question {question.id}: "
            f"correct={is_correct} points={points_earned}"
        )
        return AnswerEvaluation(is_correct=is_correct, points_earned=points_earned, feedback=feedback)


def create_subjective_grader(mode: str, min_length: int = DEFAULT_MIN_SUBJECTIVE_LENGTH) -> SubjectiveGrader:
    """
    Build the subjective grader named by configuration.

    Args:
        mode: ``heuristic`` or ``deferred``
        min_length: Minimum trimmed length for the heuristic grader

    Raises:
        ValueError: If the mode is unknown
    """
    if mode == "heuristic":
        return HeuristicSubjectiveGrader(min_length=min_length)
    if mode == "deferred":
        return DeferredSubjectiveGrader()
    raise ValueError(f"Unknown subjective grader mode: {mode}")
