"""
Shared fixtures for the assessment engine tests.

Wires the engine over either the in-memory store or an in-memory SQLite
database, both seeded with the course built in ``factories``.
"""

import random

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from lms_backend.config import Settings
from lms_backend.database.init_db import create_schema, enable_sqlite_savepoints
from lms_backend.assessments.memory_repository import MemoryAssessmentStore
from lms_backend.assessments.service_factory import create_engine_components
from lms_backend.assessments.sql_repository import SqlRepositories
from lms_backend.tests.factories import (
    COURSE_ID,
    DRAFT_ASSESSMENT_ID,
    OTHER_STUDENT_ID,
    STUDENT_ID,
    make_assessment,
    make_assessment_questions,
    make_bank
)


@pytest.fixture
def settings():
    return Settings(SUBJECTIVE_GRADER="heuristic", SUBJECTIVE_MIN_LENGTH=10)


@pytest.fixture
def memory_store():
    """In-memory store seeded with the course, its assessments and bank."""
    store = MemoryAssessmentStore(
        assessments=[make_assessment(), make_assessment(DRAFT_ASSESSMENT_ID, published=False)],
        questions=make_assessment_questions() + make_bank()
    )
    store.add_enrollment(STUDENT_ID, COURSE_ID)
    store.add_enrollment(OTHER_STUDENT_ID, COURSE_ID)
    return store


@pytest.fixture
def components(memory_store, settings):
    """Engine wired over the memory store with a seeded selector."""
    return create_engine_components(
        memory_store, memory_store, memory_store, memory_store,
        settings=settings,
        rng=random.Random(1234)
    )


@pytest.fixture
def manager(components):
    return components.manager


@pytest_asyncio.fixture
async def sql_engine():
    """Async SQLite engine shared across sessions, with the engine schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )
    enable_sqlite_savepoints(engine)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def sql_repositories(sql_engine):
    """SQL repositories seeded like the memory store."""
    repositories = SqlRepositories(async_sessionmaker(sql_engine, expire_on_commit=False))
    await repositories.questions.add_assessment(make_assessment(), make_assessment_questions())
    for question in make_bank():
        await repositories.questions.add_bank_question(question)
    await repositories.enrollments.add_enrollment(STUDENT_ID, COURSE_ID)
    return repositories


@pytest.fixture
def sql_components(sql_repositories, settings):
    return create_engine_components(
        sql_repositories.questions,
        sql_repositories.attempts,
        sql_repositories.enrollments,
        sql_repositories.topic_performance,
        settings=settings,
        rng=random.Random(1234)
    )
