"""
Tests for answer evaluation of MCQ, MSQ and subjective questions.
"""

import pytest

from lms_backend.common.error_handling import ValidationError
from lms_backend.assessments.answer_evaluation import (
    AnswerEvaluator,
    DeferredSubjectiveGrader,
    HeuristicSubjectiveGrader,
    create_subjective_grader,
    is_mcq_correct,
    is_msq_correct
)
from lms_backend.assessments.models import (
    MCQAnswer,
    MSQAnswer,
    Question,
    QuestionOption,
    QuestionType,
    SubjectiveAnswer,
    answer_for_question
)


def _question(question_type, correct_labels=(), labels=("A", "B", "C"), points=4):
    options = []
    if question_type != QuestionType.SUBJECTIVE:
        options = [
            QuestionOption(
                id=f"opt-{label}",
                question_id="q1",
                option_label=label,
                option_text=label,
                is_correct=label in correct_labels
            )
            for label in labels
        ]
    return Question(
        id="q1",
        question_type=question_type,
        question_text="Question",
        points=points,
        options=options
    )


@pytest.fixture
def evaluator():
    return AnswerEvaluator(HeuristicSubjectiveGrader(min_length=10))


def test_mcq_requires_exactly_one_correct_selection():
    correct = {"opt-A"}
    assert is_mcq_correct({"opt-A"}, correct)
    assert not is_mcq_correct({"opt-B"}, correct)
    assert not is_mcq_correct({"opt-A", "opt-B"}, correct)
    assert not is_mcq_correct(set(), correct)


def test_msq_requires_exact_set_match():
    correct = {"opt-A", "opt-C"}
    assert is_msq_correct({"opt-C", "opt-A"}, correct)
    assert not is_msq_correct({"opt-A"}, correct)
    assert not is_msq_correct({"opt-A", "opt-B", "opt-C"}, correct)


def test_mcq_correct_earns_full_points(evaluator):
    question = _question(QuestionType.MCQ, {"A"})
    result = evaluator.evaluate(question, MCQAnswer(["opt-A"]))
    assert result.is_correct is True
    assert result.points_earned == 4


def test_mcq_incorrect_earns_nothing(evaluator):
    question = _question(QuestionType.MCQ, {"A"})
    result = evaluator.evaluate(question, MCQAnswer(["opt-B"]))
    assert result.is_correct is False
    assert result.points_earned == 0


def test_msq_no_partial_credit(evaluator):
    question = _question(QuestionType.MSQ, {"A", "B"})
    assert evaluator.evaluate(question, MSQAnswer(["opt-A", "opt-B"])).points_earned == 4
    partial = evaluator.evaluate(question, MSQAnswer(["opt-A"]))
    assert partial.is_correct is False
    assert partial.points_earned == 0


@pytest.mark.parametrize("correct_labels", [(), ("A",)])
def test_msq_needs_two_correct_options(correct_labels):
    question = _question(QuestionType.MSQ, correct_labels)
    with pytest.raises(ValidationError):
        question.check_invariants()


def test_question_option_invariants():
    _question(QuestionType.MSQ, {"A", "C"}).check_invariants()
    _question(QuestionType.MCQ, {"B"}).check_invariants()
    with pytest.raises(ValidationError):
        _question(QuestionType.MCQ, {"A", "B"}).check_invariants()
    with pytest.raises(ValidationError):
        _question(QuestionType.MCQ, {"A"}, labels=("A", "A")).check_invariants()


def test_explicit_correct_ids_override_question_options(evaluator):
    question = _question(QuestionType.MCQ, {"A"})
    result = evaluator.evaluate(question, MCQAnswer(["opt-B"]), correct_option_ids={"opt-B"})
    assert result.is_correct is True


def test_answer_type_mismatch_is_rejected(evaluator):
    question = _question(QuestionType.MCQ, {"A"})
    with pytest.raises(ValidationError):
        evaluator.evaluate(question, SubjectiveAnswer("A long enough answer"))


@pytest.mark.parametrize("text", [
    "",
    "   ",
    "na",
    " N/A ",
    "too short",
    "I don't know",
    "Honestly I have no idea about this",
    "idk what this question means",
    "I would leave this one blank",
    "None of the above applies here",
])
def test_heuristic_marks_non_answers_incorrect(evaluator, text):
    question = _question(QuestionType.SUBJECTIVE)
    result = evaluator.evaluate(question, SubjectiveAnswer(text))
    assert result.is_correct is False
    assert result.points_earned == 0
    assert result.feedback


def test_heuristic_accepts_substantive_answer(evaluator):
    question = _question(QuestionType.SUBJECTIVE)
    result = evaluator.evaluate(question, SubjectiveAnswer("Supply rises when prices rise."))
    assert result.is_correct is True
    assert result.points_earned == 4
    assert result.feedback is None


def test_heuristic_min_length_is_configurable():
    grader = HeuristicSubjectiveGrader(min_length=3)
    assert grader.grade(_question(QuestionType.SUBJECTIVE), "yes") is True


def test_deferred_grader_leaves_answer_pending():
    evaluator = AnswerEvaluator(DeferredSubjectiveGrader())
    result = evaluator.evaluate(_question(QuestionType.SUBJECTIVE), SubjectiveAnswer("A careful answer."))
    assert result.is_correct is None
    assert result.is_pending
    assert result.points_earned == 0


def test_create_subjective_grader_modes():
    assert isinstance(create_subjective_grader("heuristic", 5), HeuristicSubjectiveGrader)
    assert isinstance(create_subjective_grader("deferred"), DeferredSubjectiveGrader)
    with pytest.raises(ValueError):
        create_subjective_grader("semantic")


def test_answer_for_question_builds_matching_variant():
    assert isinstance(answer_for_question(QuestionType.MCQ, ["a"]), MCQAnswer)
    assert isinstance(answer_for_question(QuestionType.MSQ, ["a", "b"]), MSQAnswer)
    assert isinstance(answer_for_question(QuestionType.SUBJECTIVE, text_answer="text"), SubjectiveAnswer)
    with pytest.raises(ValidationError):
        answer_for_question(QuestionType.MCQ)
    with pytest.raises(ValidationError):
        answer_for_question(QuestionType.SUBJECTIVE, ["a"])
