"""
Adaptive Question Selection

This module provides the difficulty ratchet used in the adaptive flow and
the selector that draws the next bank question for an attempt:

1. A correct answer moves the target difficulty up (HARD is absorbing)
2. An incorrect answer moves it down (EASY is absorbing)
3. When nothing is left at the target difficulty the selector falls back to
   any difficulty, and reports no question once the pool is exhausted
"""

import random
from typing import AbstractSet, List, Optional

from lms_backend.common.logger import app_logger, log_execution_time
from lms_backend.assessments.models import Difficulty, Question, QuestionFilters
from lms_backend.assessments.repositories import QuestionRepository

# Module logger
logger = app_logger.getChild("question_selection")

# Difficulty assumed for a previous question that has none
DEFAULT_DIFFICULTY = Difficulty.MEDIUM


def next_difficulty(current: Optional[Difficulty], was_correct: bool) -> Difficulty:
    """
    Apply one step of the difficulty ratchet.

    Args:
        current: Difficulty of the question just answered
        was_correct: Whether that answer was correct

    Returns:
        The target difficulty for the next question
    """
    current = current or DEFAULT_DIFFICULTY
    return current.harder() if was_correct else current.easier()


class AdaptiveQuestionSelector:
    """
    Draws bank questions for the adaptive flow.

    Args:
        questions: Repository listing the course question bank
        rng: Random source; pass a seeded ``random.Random`` for reproducible draws
    """

    def __init__(self, questions: QuestionRepository, rng: Optional[random.Random] = None):
        self.questions = questions
        self.rng = rng or random.Random()

    def _pick(self, pool: List[Question]) -> Question:
        # Stable order so a seeded random source replays the same sequence
        ordered = sorted(pool, key=lambda q: q.id)
        return ordered[self.rng.randrange(len(ordered))]

    @log_execution_time(logger)
    async def select_first(
        self,
        course_id: str,
        filters: Optional[QuestionFilters] = None,
        exclude_ids: AbstractSet[str] = frozenset()
    ) -> Optional[Question]:
        """
        Draw the first question uniformly from the whole filtered pool.

        Args:
            course_id: Course whose bank is used
            filters: Optional type/topic/subtopic/bloom filters
            exclude_ids: Question ids already asked

        Returns:
            A question, or None when the pool is empty
        """
        base = (filters or QuestionFilters()).with_difficulty(None)
        pool = [
            q for q in await self.questions.list_bank_questions(course_id, base)
            if q.id not in exclude_ids
        ]
        logger.debug(f"First draw for course {course_id}: pool={len(pool)}")
        if not pool:
            return None
        return self._pick(pool)

    @log_execution_time(logger)
    async def select_next(
        self,
        course_id: str,
        current_difficulty: Optional[Difficulty],
        was_correct: bool,
        filters: Optional[QuestionFilters] = None,
        exclude_ids: AbstractSet[str] = frozenset()
    ) -> Optional[Question]:
        """
        Draw the next question after an answer.

        Args:
            course_id: Course whose bank is used
            current_difficulty: Difficulty of the question just answered
            was_correct: Whether that answer was correct
            filters: Optional type/topic/subtopic/bloom filters
            exclude_ids: Question ids already asked in the attempt

        Returns:
            A question at the target difficulty, otherwise one at any
            difficulty, otherwise None
        """
        base = (filters or QuestionFilters()).with_difficulty(None)
        target = next_difficulty(current_difficulty, was_correct)

        target_pool = [
            q for q in await self.questions.list_bank_questions(course_id, base.with_difficulty(target))
            if q.id not in exclude_ids
        ]
        if target_pool:
            logger.debug(
                f"Adaptive draw for course {course_id}: target={target.value} "
                f"target_pool={len(target_pool)}"
            )
            return self._pick(target_pool)

        fallback_pool = [
            q for q in await self.questions.list_bank_questions(course_id, base)
            if q.id not in exclude_ids
        ]
        logger.debug(
            f"Adaptive draw for course {course_id}: target={target.value} "
            f"target_pool=0 fallback_pool={len(fallback_pool)}"
        )
        if not fallback_pool:
            return None
        return self._pick(fallback_pool)
