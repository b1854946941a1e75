"""
Adaptive Assessments

Domain records, repositories and services for the student assessment flow.
Services live in their own modules:

- attempt_service: the attempt lifecycle (start, submit, advance, results)
- answer_evaluation: correctness and points for each question type
- question_selection: difficulty ratchet and adaptive question picking
- question_bank: course-scoped reusable questions
"""

from lms_backend.assessments.models import (
    QuestionType,
    Difficulty,
    BloomLevel,
    AttemptStatus,
    Assessment,
    Question,
    QuestionOption,
    QuestionFilters,
    MCQAnswer,
    MSQAnswer,
    SubjectiveAnswer,
    StudentAttempt,
    StudentAnswer
)

__all__ = [
    "QuestionType", "Difficulty", "BloomLevel", "AttemptStatus",
    "Assessment", "Question", "QuestionOption", "QuestionFilters",
    "MCQAnswer", "MSQAnswer", "SubjectiveAnswer",
    "StudentAttempt", "StudentAnswer"
]
