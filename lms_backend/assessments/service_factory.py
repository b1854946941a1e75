"""
Assessment engine wiring.

Builds the lifecycle manager and its collaborators from a set of repositories
and the application settings.
"""

import random
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from lms_backend.config import Settings, settings as default_settings
from lms_backend.common.performance.tracker import TopicPerformanceTracker
from lms_backend.assessments.answer_evaluation import AnswerEvaluator, create_subjective_grader
from lms_backend.assessments.attempt_service import AttemptLifecycleManager
from lms_backend.assessments.question_bank import QuestionBankService
from lms_backend.assessments.question_selection import AdaptiveQuestionSelector
from lms_backend.assessments.repositories import (
    AttemptStore,
    EnrollmentDirectory,
    QuestionRepository,
    TopicPerformanceStore
)
from lms_backend.assessments.sql_repository import SqlRepositories


@dataclass
class EngineComponents:
    """The engine services exposed to the HTTP layer."""

    manager: AttemptLifecycleManager
    tracker: TopicPerformanceTracker
    question_bank: QuestionBankService


def create_engine_components(
    questions: QuestionRepository,
    attempts: AttemptStore,
    enrollments: EnrollmentDirectory,
    topic_performance: TopicPerformanceStore,
    settings: Optional[Settings] = None,
    rng: Optional[random.Random] = None
) -> EngineComponents:
    """
    Wire the engine over the given repositories.

    Args:
        questions: Question repository
        attempts: Attempt store
        enrollments: Enrollment directory
        topic_performance: Topic performance store
        settings: Settings providing grader mode and random seed
        rng: Random source for the selector; seeded from settings when omitted

    Returns:
        The wired components
    """
    settings = settings or default_settings
    if rng is None:
        rng = random.Random(settings.SELECTOR_RANDOM_SEED)

    tracker = TopicPerformanceTracker(topic_performance)
    evaluator = AnswerEvaluator(
        create_subjective_grader(settings.SUBJECTIVE_GRADER, settings.SUBJECTIVE_MIN_LENGTH)
    )
    manager = AttemptLifecycleManager(
        questions=questions,
        attempts=attempts,
        enrollments=enrollments,
        tracker=tracker,
        evaluator=evaluator,
        selector=AdaptiveQuestionSelector(questions, rng)
    )
    return EngineComponents(
        manager=manager,
        tracker=tracker,
        question_bank=QuestionBankService(questions)
    )


def create_sql_engine_components(
    session_factory: async_sessionmaker,
    settings: Optional[Settings] = None
) -> EngineComponents:
    """Wire the engine over SQL repositories sharing one session factory."""
    repositories = SqlRepositories(session_factory)
    return create_engine_components(
        repositories.questions,
        repositories.attempts,
        repositories.enrollments,
        repositories.topic_performance,
        settings
    )
