"""
Student Assessment Controller

This module implements the API endpoints of the adaptive assessment engine:
starting attempts, bulk and adaptive answer submission, results, attempt
history, topic performance and the course question bank.

Engine errors are mapped to HTTP status codes by their kind.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from lms_backend.common.auth.dependencies import get_current_user_id
from lms_backend.common.error_handling import (
    EngineError,
    NotFoundError,
    ValidationError,
    convert_exception,
    error_response,
    log_error
)
from lms_backend.common.logger import get_logger
from lms_backend.common.serialization import serialize
from lms_backend.database.init_db import get_session_factory
from lms_backend.assessments.models import (
    AnswerSubmission,
    BloomLevel,
    Difficulty,
    QuestionFilters,
    QuestionType,
    answer_for_question
)
from lms_backend.assessments.attempt_service import AttemptLifecycleManager
from lms_backend.assessments.service_factory import EngineComponents, create_sql_engine_components

# Set up logger
logger = get_logger("controller")

# Create routers
router = APIRouter()
performance_router = APIRouter()
bank_router = APIRouter()

_components: Optional[EngineComponents] = None


def get_engine_components() -> EngineComponents:
    """Engine services over the application database, created on first use."""
    global _components
    if _components is None:
        _components = create_sql_engine_components(get_session_factory())
        logger.info("Assessment engine components initialized")
    return _components


def reset_engine_components() -> None:
    global _components
    _components = None


# Request Models

class AnswerItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question_id: Optional[str] = Field(None, alias="questionId", description="Question identifier")
    selected_option_ids: Optional[List[str]] = Field(None, alias="selectedOptionIds")
    answer_text: Optional[str] = Field(None, alias="answerText")
    time_taken_seconds: Optional[int] = Field(None, ge=0, alias="timeTakenSeconds")


class SubmitAssessmentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    attempt_id: str = Field(..., alias="attemptId", description="Attempt identifier")
    answers: List[AnswerItem] = Field(default_factory=list)


class SubmitAnswerRequest(AnswerItem):
    question_type: Optional[QuestionType] = Field(None, alias="questionType", description="Filter for the next question")
    topic_id: Optional[str] = Field(None, alias="topicId")
    subtopic_id: Optional[str] = Field(None, alias="subtopicId")
    bloom_level: Optional[BloomLevel] = Field(None, alias="bloomLevel")


class SaveToBankRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question_id: str = Field(..., alias="questionId")


def _http_error(error: Exception) -> HTTPException:
    """Log an error and convert it to the HTTP exception for its kind."""
    engine_error = convert_exception(error)
    if engine_error.http_status >= 500:
        log_error(engine_error, include_stack_trace=not isinstance(error, EngineError))
    else:
        log_error(engine_error, level=logging.WARNING)
    return HTTPException(status_code=engine_error.http_status, detail=error_response(engine_error))


async def _build_submission(manager: AttemptLifecycleManager, item: AnswerItem) -> AnswerSubmission:
    """Turn a wire answer into the tagged variant for its question's type."""
    if not item.question_id:
        raise ValidationError("Question ID is required")
    question = await manager.questions.get_question(item.question_id)
    if question is None:
        raise NotFoundError("Question", item.question_id)
    answer = answer_for_question(question.question_type, item.selected_option_ids, item.answer_text)
    return AnswerSubmission(item.question_id, answer, item.time_taken_seconds)


# Student assessment endpoints

@router.post("/{assessment_id}/start")
async def start_assessment(
    assessment_id: str,
    user_id: str = Depends(get_current_user_id),
    components: EngineComponents = Depends(get_engine_components)
) -> Dict[str, Any]:
    """Start an attempt at a published assessment."""
    try:
        result = await components.manager.start(assessment_id, user_id)
        return serialize(result)
    except Exception as e:
        raise _http_error(e)


@router.post("/{assessment_id}/submit")
async def submit_assessment(
    assessment_id: str,
    request: SubmitAssessmentRequest,
    user_id: str = Depends(get_current_user_id),
    components: EngineComponents = Depends(get_engine_components)
) -> Dict[str, Any]:
    """Submit every answer of an attempt and complete it."""
    try:
        manager = components.manager
        await manager.open_attempt(request.attempt_id, user_id, assessment_id)
        submissions = [await _build_submission(manager, item) for item in request.answers]
        result = await manager.submit_batch(
            request.attempt_id,
            submissions,
            student_id=user_id,
            assessment_id=assessment_id
        )
        return serialize(result)
    except Exception as e:
        raise _http_error(e)


@router.get("/{assessment_id}/attempts")
async def get_student_attempts(
    assessment_id: str,
    user_id: str = Depends(get_current_user_id),
    components: EngineComponents = Depends(get_engine_components)
) -> List[Dict[str, Any]]:
    """The caller's attempts at an assessment, newest first."""
    try:
        attempts = await components.manager.list_attempts(assessment_id, user_id)
        return serialize(attempts)
    except Exception as e:
        raise _http_error(e)


@router.get("/{assessment_id}/results/{attempt_id}")
async def get_assessment_results(
    assessment_id: str,
    attempt_id: str,
    user_id: str = Depends(get_current_user_id),
    components: EngineComponents = Depends(get_engine_components)
) -> Dict[str, Any]:
    """An attempt with its answers and questions."""
    try:
        details = await components.manager.get_attempt(attempt_id, user_id, assessment_id=assessment_id)
        return serialize(details)
    except Exception as e:
        raise _http_error(e)


@router.get("/{assessment_id}/attempts/{attempt_id}/next-question")
async def get_next_question(
    assessment_id: str,
    attempt_id: str,
    question_type: Optional[QuestionType] = Query(None),
    topic_id: Optional[str] = Query(None),
    subtopic_id: Optional[str] = Query(None),
    bloom_level: Optional[BloomLevel] = Query(None),
    user_id: str = Depends(get_current_user_id),
    components: EngineComponents = Depends(get_engine_components)
) -> Dict[str, Any]:
    """The next adaptive question, or completion when none is left."""
    try:
        filters = QuestionFilters(
            question_type=question_type,
            topic_id=topic_id,
            subtopic_id=subtopic_id,
            bloom_level=bloom_level
        )
        result = await components.manager.next_question(
            attempt_id,
            student_id=user_id,
            filters=filters,
            assessment_id=assessment_id
        )
        response = serialize(result)
        if result.is_complete:
            response["message"] = "No more questions available"
        return response
    except Exception as e:
        raise _http_error(e)


@router.post("/{assessment_id}/attempts/{attempt_id}/submit-answer")
async def submit_answer_and_get_next(
    assessment_id: str,
    attempt_id: str,
    request: SubmitAnswerRequest,
    user_id: str = Depends(get_current_user_id),
    components: EngineComponents = Depends(get_engine_components)
) -> Dict[str, Any]:
    """Submit one answer in the adaptive flow and get the next question."""
    try:
        manager = components.manager
        await manager.open_attempt(attempt_id, user_id, assessment_id)
        submission = await _build_submission(manager, request)
        filters = QuestionFilters(
            question_type=request.question_type,
            topic_id=request.topic_id,
            subtopic_id=request.subtopic_id,
            bloom_level=request.bloom_level
        )
        result = await manager.submit_one_and_advance(
            attempt_id,
            submission.question_id,
            submission.answer,
            student_id=user_id,
            filters=filters,
            time_taken_seconds=submission.time_taken_seconds,
            assessment_id=assessment_id
        )
        return serialize(result)
    except Exception as e:
        raise _http_error(e)


# Topic performance endpoints

@performance_router.get("/topics")
async def get_topic_performance(
    topic_ids: Optional[List[str]] = Query(None),
    user_id: str = Depends(get_current_user_id),
    components: EngineComponents = Depends(get_engine_components)
) -> List[Dict[str, Any]]:
    """The caller's accuracy per topic/subtopic bucket."""
    try:
        records = await components.tracker.get_topic_performance(user_id, topic_ids)
        return serialize(records)
    except Exception as e:
        raise _http_error(e)


# Question bank endpoints

@bank_router.get("/{course_id}")
async def get_question_bank(
    course_id: str,
    difficulty: Optional[Difficulty] = Query(None),
    bloom_level: Optional[BloomLevel] = Query(None),
    question_type: Optional[QuestionType] = Query(None),
    topic_id: Optional[str] = Query(None),
    subtopic_id: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    components: EngineComponents = Depends(get_engine_components)
) -> List[Dict[str, Any]]:
    """Bank entries of a course with optional filters."""
    try:
        filters = QuestionFilters(
            question_type=question_type,
            topic_id=topic_id,
            subtopic_id=subtopic_id,
            difficulty=difficulty,
            bloom_level=bloom_level
        )
        entries = await components.question_bank.list_bank(course_id, filters)
        return serialize(entries)
    except Exception as e:
        raise _http_error(e)


@bank_router.post("/{course_id}")
async def save_question_to_bank(
    course_id: str,
    request: SaveToBankRequest,
    user_id: str = Depends(get_current_user_id),
    components: EngineComponents = Depends(get_engine_components)
) -> Dict[str, Any]:
    """Copy an assessment question into the course bank."""
    try:
        entry = await components.question_bank.save_to_bank(request.question_id, course_id)
        return serialize(entry)
    except Exception as e:
        raise _http_error(e)
