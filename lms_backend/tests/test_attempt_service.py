"""
Tests for the attempt lifecycle: start, bulk submission, the adaptive flow
and results, over the in-memory store.
"""

import asyncio
import datetime
import random

import pytest

from lms_backend.config import Settings
from lms_backend.common.error_handling import (
    AlreadyCompletedError,
    EnrollmentError,
    ForbiddenError,
    NotFoundError,
    StorageError,
    ValidationError
)
from lms_backend.common.serialization import serialize
from lms_backend.assessments.attempt_service import compute_percentage, minutes_between, round_half_up
from lms_backend.assessments.models import (
    AnswerSubmission,
    AttemptStatus,
    Difficulty,
    MCQAnswer,
    SubjectiveAnswer
)
from lms_backend.assessments.service_factory import create_engine_components
from lms_backend.tests.factories import (
    ASSESSMENT_ID,
    DRAFT_ASSESSMENT_ID,
    MCQ_CORRECT,
    MCQ_ID,
    MCQ_WRONG,
    OTHER_STUDENT_ID,
    STUDENT_ID,
    SUBJECTIVE_ID,
    SUBTOPIC_ID,
    TOPIC_ID,
    correct_option,
    wrong_option
)


class SteppingClock:
    """Clock advancing by a fixed step on every call."""

    def __init__(self, step=datetime.timedelta(seconds=1)):
        self.now = datetime.datetime(2026, 1, 5, 9, 0, 0)
        self.step = step

    def __call__(self):
        current = self.now
        self.now += self.step
        return current


def _batch(subjective_text="I don't know", mcq_option=MCQ_CORRECT):
    return [
        AnswerSubmission(MCQ_ID, MCQAnswer([mcq_option]), time_taken_seconds=20),
        AnswerSubmission(SUBJECTIVE_ID, SubjectiveAnswer(subjective_text), time_taken_seconds=90)
    ]


async def _buckets(store, student_id=STUDENT_ID):
    return {(r.topic_id, r.subtopic_id): r for r in await store.list_records(student_id)}


def test_rounding_matches_half_up():
    assert round_half_up(16.5) == 17
    assert round_half_up(16.49) == 16
    assert compute_percentage(1, 6) == 17
    assert compute_percentage(0, 0) == 0
    start = datetime.datetime(2026, 1, 1, 10, 0, 0)
    assert minutes_between(start, start + datetime.timedelta(minutes=2, seconds=30)) == 3
    assert minutes_between(start, start + datetime.timedelta(seconds=29)) == 0


# Start

@pytest.mark.asyncio
async def test_start_returns_attempt_and_summary(manager, memory_store):
    result = await manager.start(ASSESSMENT_ID, STUDENT_ID)

    assert result.assessment == {
        "id": ASSESSMENT_ID,
        "title": "Unit 1 Quiz",
        "total_questions": 2,
        "time_limit_minutes": 30
    }
    attempt = await memory_store.get_attempt(result.attempt_id)
    assert attempt.status == AttemptStatus.IN_PROGRESS
    assert attempt.student_id == STUDENT_ID
    assert attempt.enrollment_id is not None


@pytest.mark.asyncio
async def test_start_rejects_missing_unpublished_and_unenrolled(manager):
    with pytest.raises(NotFoundError):
        await manager.start("no-such-assessment", STUDENT_ID)
    with pytest.raises(ForbiddenError):
        await manager.start(DRAFT_ASSESSMENT_ID, STUDENT_ID)
    with pytest.raises(EnrollmentError):
        await manager.start(ASSESSMENT_ID, "not-enrolled")


# Bulk submission

@pytest.mark.asyncio
async def test_batch_scores_mcq_and_subjective(manager, memory_store):
    started = await manager.start(ASSESSMENT_ID, STUDENT_ID)

    result = await manager.submit_batch(started.attempt_id, _batch(), student_id=STUDENT_ID)

    assert result.attempt.is_completed
    assert result.attempt.score == 1
    assert result.attempt.total_points == 6
    assert result.attempt.percentage == 17
    by_question = {r.question_id: r for r in result.results}
    assert by_question[MCQ_ID].is_correct is True
    assert by_question[SUBJECTIVE_ID].is_correct is False
    assert by_question[SUBJECTIVE_ID].points_earned == 0
    assert result.summary.correct_count == 1
    assert result.summary.answered_count == 2

    buckets = await _buckets(memory_store)
    assert buckets[(TOPIC_ID, None)].correct_answers == 1
    assert buckets[(TOPIC_ID, SUBTOPIC_ID)].attempts == 1
    assert buckets[(TOPIC_ID, SUBTOPIC_ID)].correct_answers == 0


@pytest.mark.asyncio
async def test_batch_records_elapsed_minutes(manager):
    manager.clock = SteppingClock(step=datetime.timedelta(minutes=2, seconds=31))
    started = await manager.start(ASSESSMENT_ID, STUDENT_ID)

    result = await manager.submit_batch(started.attempt_id, _batch())

    assert result.attempt.time_taken_minutes == 3
    assert result.attempt.submitted_at > result.attempt.started_at


@pytest.mark.asyncio
async def test_resubmitting_completed_attempt_changes_nothing(manager, memory_store):
    started = await manager.start(ASSESSMENT_ID, STUDENT_ID)
    await manager.submit_batch(started.attempt_id, _batch())
    before = await memory_store.get_attempt(started.attempt_id)
    buckets_before = {k: r.attempts for k, r in (await _buckets(memory_store)).items()}

    with pytest.raises(AlreadyCompletedError):
        await manager.submit_batch(started.attempt_id, _batch(subjective_text="A detailed explanation."))

    after = await memory_store.get_attempt(started.attempt_id)
    assert (after.score, after.percentage, after.submitted_at) == (before.score, before.percentage, before.submitted_at)
    assert len(await memory_store.list_answers(started.attempt_id)) == 2
    assert {k: r.attempts for k, r in (await _buckets(memory_store)).items()} == buckets_before


@pytest.mark.asyncio
async def test_completed_attempt_rejects_malformed_payloads(manager):
    started = await manager.start(ASSESSMENT_ID, STUDENT_ID)
    await manager.submit_batch(started.attempt_id, _batch())

    with pytest.raises(AlreadyCompletedError):
        await manager.submit_batch(started.attempt_id, [AnswerSubmission("", MCQAnswer([MCQ_CORRECT]))])
    with pytest.raises(AlreadyCompletedError):
        await manager.submit_batch(started.attempt_id, _batch() + _batch())
    with pytest.raises(AlreadyCompletedError):
        await manager.submit_one_and_advance(started.attempt_id, "", MCQAnswer(["x"]))


@pytest.mark.asyncio
async def test_concurrent_submissions_finalize_once(manager, memory_store):
    started = await manager.start(ASSESSMENT_ID, STUDENT_ID)

    outcomes = await asyncio.gather(
        manager.submit_batch(started.attempt_id, _batch()),
        manager.submit_batch(started.attempt_id, _batch()),
        return_exceptions=True
    )

    successes = [o for o in outcomes if not isinstance(o, Exception)]
    failures = [o for o in outcomes if isinstance(o, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], AlreadyCompletedError)
    assert successes[0].attempt.score == 1
    assert len(await memory_store.list_answers(started.attempt_id)) == 2
    assert (await _buckets(memory_store))[(TOPIC_ID, None)].attempts == 1


@pytest.mark.asyncio
async def test_invalid_batches_are_rejected_before_writing(manager, memory_store):
    started = await manager.start(ASSESSMENT_ID, STUDENT_ID)
    attempt_id = started.attempt_id

    with pytest.raises(ValidationError):
        await manager.submit_batch(attempt_id, [AnswerSubmission("", MCQAnswer([MCQ_CORRECT]))])
    with pytest.raises(ValidationError):
        await manager.submit_batch(attempt_id, _batch() + [AnswerSubmission(MCQ_ID, MCQAnswer([MCQ_WRONG]))])
    with pytest.raises(ValidationError):
        await manager.submit_batch(attempt_id, [AnswerSubmission(MCQ_ID, SubjectiveAnswer("A wrong variant"))])
    with pytest.raises(NotFoundError):
        await manager.submit_batch(attempt_id, [AnswerSubmission("missing-question", MCQAnswer(["x"]))])

    assert await memory_store.list_answers(attempt_id) == []
    assert not (await memory_store.get_attempt(attempt_id)).is_completed


@pytest.mark.asyncio
async def test_failed_finalize_rolls_back_answers_and_counters(manager, memory_store, monkeypatch):
    started = await manager.start(ASSESSMENT_ID, STUDENT_ID)

    async def failing_finalize(*args, **kwargs):
        raise StorageError("datastore unavailable", operation="finalize")

    monkeypatch.setattr(memory_store, "finalize_attempt", failing_finalize)

    with pytest.raises(StorageError):
        await manager.submit_batch(started.attempt_id, _batch())

    assert await memory_store.list_answers(started.attempt_id) == []
    assert await memory_store.list_records(STUDENT_ID) == []
    assert not (await memory_store.get_attempt(started.attempt_id)).is_completed


@pytest.mark.asyncio
async def test_attempt_ownership_and_assessment_checks(manager):
    started = await manager.start(ASSESSMENT_ID, STUDENT_ID)

    with pytest.raises(ForbiddenError):
        await manager.submit_batch(started.attempt_id, _batch(), student_id=OTHER_STUDENT_ID)
    with pytest.raises(ForbiddenError):
        await manager.get_attempt(started.attempt_id, OTHER_STUDENT_ID)
    with pytest.raises(ValidationError):
        await manager.submit_batch(started.attempt_id, _batch(), assessment_id=DRAFT_ASSESSMENT_ID)
    with pytest.raises(NotFoundError):
        await manager.submit_batch("no-such-attempt", _batch())


@pytest.mark.asyncio
async def test_deferred_grading_leaves_subjective_pending(memory_store):
    components = create_engine_components(
        memory_store, memory_store, memory_store, memory_store,
        settings=Settings(SUBJECTIVE_GRADER="deferred"),
        rng=random.Random(5)
    )
    manager = components.manager
    started = await manager.start(ASSESSMENT_ID, STUDENT_ID)

    result = await manager.submit_batch(started.attempt_id, _batch(subjective_text="A thoughtful answer."))

    subjective = next(r for r in result.results if r.question_id == SUBJECTIVE_ID)
    assert subjective.is_correct is None
    assert subjective.is_pending
    assert subjective.points_earned == 0
    assert result.summary.pending_count == 1
    assert result.attempt.score == 1
    assert (TOPIC_ID, SUBTOPIC_ID) not in await _buckets(memory_store)


# Adaptive flow

@pytest.mark.asyncio
async def test_first_adaptive_question_comes_from_course_bank(manager):
    started = await manager.start(ASSESSMENT_ID, STUDENT_ID)

    result = await manager.next_question(started.attempt_id, student_id=STUDENT_ID)

    assert result.is_complete is False
    assert result.question.course_id == "course-1"
    public = serialize(result)["question"]
    assert all("is_correct" not in option for option in public["options"])
    assert "explanation" not in public


@pytest.mark.asyncio
async def test_incorrect_medium_answer_moves_to_easy(manager):
    started = await manager.start(ASSESSMENT_ID, STUDENT_ID)

    result = await manager.submit_one_and_advance(
        started.attempt_id,
        "bank-medium-1",
        MCQAnswer([wrong_option("bank-medium-1")]),
        student_id=STUDENT_ID
    )

    assert result.is_correct is False
    assert result.is_complete is False
    assert result.is_pending_evaluation is False
    assert result.next_question.difficulty == Difficulty.EASY

    following = await manager.next_question(started.attempt_id)
    assert following.question.difficulty == Difficulty.EASY


@pytest.mark.asyncio
async def test_repeated_adaptive_answer_returns_stored_result(manager, memory_store):
    started = await manager.start(ASSESSMENT_ID, STUDENT_ID)
    await manager.submit_one_and_advance(
        started.attempt_id, "bank-hard-1", MCQAnswer([wrong_option("bank-hard-1")])
    )

    repeat = await manager.submit_one_and_advance(
        started.attempt_id, "bank-hard-1", MCQAnswer([correct_option("bank-hard-1")])
    )

    assert repeat.already_answered is True
    assert repeat.is_correct is False
    assert len(await memory_store.list_answers(started.attempt_id)) == 1
    assert (await _buckets(memory_store))[(TOPIC_ID, None)].attempts == 1


@pytest.mark.asyncio
async def test_adaptive_flow_completes_when_bank_is_exhausted(manager):
    started = await manager.start(ASSESSMENT_ID, STUDENT_ID)
    bank_ids = ["bank-easy-1", "bank-easy-2", "bank-medium-1", "bank-hard-1"]

    results = []
    for question_id in bank_ids:
        results.append(await manager.submit_one_and_advance(
            started.attempt_id,
            question_id,
            MCQAnswer([correct_option(question_id) if question_id != "bank-hard-1" else wrong_option(question_id)])
        ))

    assert all(not r.is_complete for r in results[:-1])
    final = results[-1]
    assert final.is_complete is True
    assert final.next_question is None
    assert final.attempt.is_completed
    assert final.attempt.total_points == 8
    assert final.attempt.score == 6
    assert final.attempt.percentage == 75

    with pytest.raises(AlreadyCompletedError):
        await manager.submit_one_and_advance(started.attempt_id, MCQ_ID, MCQAnswer([MCQ_CORRECT]))
    assert (await manager.next_question(started.attempt_id)).is_complete is True


@pytest.mark.asyncio
async def test_adaptive_answer_for_unknown_question(manager):
    started = await manager.start(ASSESSMENT_ID, STUDENT_ID)
    with pytest.raises(NotFoundError):
        await manager.submit_one_and_advance(started.attempt_id, "missing", MCQAnswer(["x"]))
    with pytest.raises(ValidationError):
        await manager.submit_one_and_advance(started.attempt_id, "", MCQAnswer(["x"]))


# Results

@pytest.mark.asyncio
async def test_attempt_details_hide_correctness_until_completed(manager):
    started = await manager.start(ASSESSMENT_ID, STUDENT_ID)
    await manager.submit_one_and_advance(
        started.attempt_id, "bank-easy-1", MCQAnswer([correct_option("bank-easy-1")])
    )

    details = await manager.get_attempt(started.attempt_id, STUDENT_ID, assessment_id=ASSESSMENT_ID)
    assert [q.id for q in details.questions] == [MCQ_ID, SUBJECTIVE_ID, "bank-easy-1"]
    data = serialize(details)
    assert all("is_correct" not in o for q in data["questions"] for o in q["options"])
    assert data["attempt"]["status"] == "in_progress"

    await manager.submit_batch(started.attempt_id, _batch())
    completed = serialize(await manager.get_attempt(started.attempt_id, STUDENT_ID))
    assert completed["attempt"]["status"] == "completed"
    assert any(o["is_correct"] for o in completed["questions"][0]["options"])


@pytest.mark.asyncio
async def test_list_attempts_newest_first(manager):
    manager.clock = SteppingClock()
    first = await manager.start(ASSESSMENT_ID, STUDENT_ID)
    second = await manager.start(ASSESSMENT_ID, STUDENT_ID)
    await manager.start(ASSESSMENT_ID, OTHER_STUDENT_ID)

    attempts = await manager.list_attempts(ASSESSMENT_ID, STUDENT_ID)

    assert [a.id for a in attempts] == [second.attempt_id, first.attempt_id]
    with pytest.raises(NotFoundError):
        await manager.list_attempts("no-such-assessment", STUDENT_ID)
