"""
Question Bank Service

Copies assessment questions into a course's reusable question bank and lists
bank entries for authoring and adaptive selection.
"""

import dataclasses
from typing import List, Optional

from lms_backend.common.logger import app_logger
from lms_backend.common.error_handling import NotFoundError
from lms_backend.assessments.models import Question, QuestionFilters, QuestionOption, new_id, utcnow
from lms_backend.assessments.repositories import QuestionRepository

# Module logger
logger = app_logger.getChild("question_bank")


class QuestionBankService:
    """Question bank operations over a question repository."""

    def __init__(self, questions: QuestionRepository):
        self.questions = questions

    async def save_to_bank(self, question_id: str, course_id: str) -> Question:
        """
        Copy a question and its options into a course bank.

        Args:
            question_id: Question to copy
            course_id: Course whose bank receives the copy

        Returns:
            The new bank entry

        Raises:
            NotFoundError: If the question does not exist
            ValidationError: If the question breaks its option invariants
        """
        source = await self.questions.get_question(question_id)
        if source is None:
            raise NotFoundError("Question", question_id)

        entry_id = new_id()
        entry = dataclasses.replace(
            source,
            id=entry_id,
            assessment_id=None,
            question_number=None,
            course_id=course_id,
            created_at=utcnow(),
            options=[
                QuestionOption(
                    id=new_id(),
                    question_id=entry_id,
                    option_label=o.option_label,
                    option_text=o.option_text,
                    is_correct=o.is_correct
                )
                for o in sorted(source.options, key=lambda o: o.option_label)
            ]
        )
        entry.check_invariants()

        await self.questions.add_bank_question(entry)
        logger.info(f"Saved question {question_id} to bank of course {course_id} as {entry_id}")
        return entry

    async def list_bank(self, course_id: str, filters: Optional[QuestionFilters] = None) -> List[Question]:
        """Bank entries of a course matching the filters, options ordered by label."""
        entries = await self.questions.list_bank_questions(course_id, filters)
        for entry in entries:
            entry.options.sort(key=lambda o: o.option_label)
        return entries
