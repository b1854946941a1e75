"""
API tests for the student assessment, performance and question bank routes.

The engine dependency is overridden with memory-backed components, so no
database is needed and startup events are not run.
"""

import pytest
from fastapi.testclient import TestClient

from lms_backend.main import app
from lms_backend.assessments.controller import get_engine_components
from lms_backend.tests.factories import (
    ASSESSMENT_ID,
    COURSE_ID,
    DRAFT_ASSESSMENT_ID,
    MCQ_CORRECT,
    MCQ_ID,
    OTHER_STUDENT_ID,
    STUDENT_ID,
    SUBJECTIVE_ID,
    wrong_option
)

BASE = "/api/student/assessments"


def _auth(user_id=STUDENT_ID):
    return {"Authorization": f"Bearer {user_id}"}


@pytest.fixture
def client(components):
    app.dependency_overrides[get_engine_components] = lambda: components
    yield TestClient(app)
    app.dependency_overrides.clear()


def _start(client, user_id=STUDENT_ID):
    response = client.post(f"{BASE}/{ASSESSMENT_ID}/start", headers=_auth(user_id))
    assert response.status_code == 200
    return response.json()["attempt_id"]


def _submit_payload(attempt_id):
    return {
        "attemptId": attempt_id,
        "answers": [
            {"questionId": MCQ_ID, "selectedOptionIds": [MCQ_CORRECT], "timeTakenSeconds": 12},
            {"questionId": SUBJECTIVE_ID, "answerText": "I don't know"}
        ]
    }


def test_missing_authorization_is_rejected(client):
    response = client.post(f"{BASE}/{ASSESSMENT_ID}/start")
    assert response.status_code == 401


def test_start_returns_assessment_summary(client):
    response = client.post(f"{BASE}/{ASSESSMENT_ID}/start", headers=_auth())

    assert response.status_code == 200
    body = response.json()
    assert body["attempt_id"]
    assert body["assessment"]["title"] == "Unit 1 Quiz"
    assert body["assessment"]["total_questions"] == 2


@pytest.mark.parametrize("assessment_id,user_id,status,code", [
    ("missing", STUDENT_ID, 404, "not_found"),
    (DRAFT_ASSESSMENT_ID, STUDENT_ID, 403, "forbidden"),
    (ASSESSMENT_ID, "not-enrolled", 403, "enrollment_required"),
])
def test_start_errors_map_to_status_codes(client, assessment_id, user_id, status, code):
    response = client.post(f"{BASE}/{assessment_id}/start", headers=_auth(user_id))

    assert response.status_code == status
    detail = response.json()["detail"]
    assert detail["status"] == "error"
    assert detail["code"] == code


def test_submit_scores_and_completes(client):
    attempt_id = _start(client)

    response = client.post(f"{BASE}/{ASSESSMENT_ID}/submit", json=_submit_payload(attempt_id), headers=_auth())

    assert response.status_code == 200
    body = response.json()
    assert body["attempt"]["score"] == 1
    assert body["attempt"]["total_points"] == 6
    assert body["attempt"]["percentage"] == 17
    assert body["attempt"]["status"] == "completed"
    assert body["summary"]["correct_count"] == 1

    again = client.post(f"{BASE}/{ASSESSMENT_ID}/submit", json=_submit_payload(attempt_id), headers=_auth())
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "already_completed"


def test_submit_without_question_id_is_a_validation_error(client):
    attempt_id = _start(client)
    payload = {"attemptId": attempt_id, "answers": [{"selectedOptionIds": [MCQ_CORRECT]}]}

    response = client.post(f"{BASE}/{ASSESSMENT_ID}/submit", json=payload, headers=_auth())

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "validation_error"


def test_completed_attempt_conflicts_before_payload_checks(client):
    attempt_id = _start(client)
    client.post(f"{BASE}/{ASSESSMENT_ID}/submit", json=_submit_payload(attempt_id), headers=_auth())

    batch = client.post(
        f"{BASE}/{ASSESSMENT_ID}/submit",
        json={"attemptId": attempt_id, "answers": [{"selectedOptionIds": [MCQ_CORRECT]}]},
        headers=_auth()
    )
    single = client.post(
        f"{BASE}/{ASSESSMENT_ID}/attempts/{attempt_id}/submit-answer",
        json={"selectedOptionIds": [MCQ_CORRECT]},
        headers=_auth()
    )

    assert batch.status_code == 409
    assert single.status_code == 409
    assert single.json()["detail"]["code"] == "already_completed"


def test_submit_to_unknown_attempt(client):
    response = client.post(f"{BASE}/{ASSESSMENT_ID}/submit", json=_submit_payload("missing"), headers=_auth())
    assert response.status_code == 404


def test_results_are_private_to_the_owner(client):
    attempt_id = _start(client)
    client.post(f"{BASE}/{ASSESSMENT_ID}/submit", json=_submit_payload(attempt_id), headers=_auth())

    own = client.get(f"{BASE}/{ASSESSMENT_ID}/results/{attempt_id}", headers=_auth())
    assert own.status_code == 200
    assert len(own.json()["answers"]) == 2

    other = client.get(f"{BASE}/{ASSESSMENT_ID}/results/{attempt_id}", headers=_auth(OTHER_STUDENT_ID))
    assert other.status_code == 403


def test_attempt_history(client):
    _start(client)
    _start(client)

    response = client.get(f"{BASE}/{ASSESSMENT_ID}/attempts", headers=_auth())

    assert response.status_code == 200
    assert len(response.json()) == 2
    assert all(a["student_id"] == STUDENT_ID for a in response.json())


def test_adaptive_question_flow(client):
    attempt_id = _start(client)

    first = client.get(f"{BASE}/{ASSESSMENT_ID}/attempts/{attempt_id}/next-question", headers=_auth())
    assert first.status_code == 200
    question = first.json()["question"]
    assert question["course_id"] == COURSE_ID
    assert all("is_correct" not in option for option in question["options"])

    answered = client.post(
        f"{BASE}/{ASSESSMENT_ID}/attempts/{attempt_id}/submit-answer",
        json={"questionId": "bank-medium-1", "selectedOptionIds": [wrong_option("bank-medium-1")]},
        headers=_auth()
    )
    assert answered.status_code == 200
    body = answered.json()
    assert body["is_correct"] is False
    assert body["is_complete"] is False
    assert body["next_question"]["difficulty"] == "EASY"


def test_topic_performance_after_submission(client):
    attempt_id = _start(client)
    client.post(f"{BASE}/{ASSESSMENT_ID}/submit", json=_submit_payload(attempt_id), headers=_auth())

    response = client.get("/api/student/performance/topics", headers=_auth())

    assert response.status_code == 200
    accuracies = {(r["topic_id"], r["subtopic_id"]): r["accuracy"] for r in response.json()}
    assert accuracies == {("topic-1", None): "100.0", ("topic-1", "subtopic-1"): "0.0"}


def test_question_bank_routes(client):
    easy = client.get(f"/api/question-bank/{COURSE_ID}", params={"difficulty": "EASY"}, headers=_auth())
    assert easy.status_code == 200
    assert {q["id"] for q in easy.json()} == {"bank-easy-1", "bank-easy-2"}

    saved = client.post(f"/api/question-bank/{COURSE_ID}", json={"questionId": MCQ_ID}, headers=_auth())
    assert saved.status_code == 200
    assert saved.json()["course_id"] == COURSE_ID
    assert saved.json()["assessment_id"] is None

    missing = client.post(f"/api/question-bank/{COURSE_ID}", json={"questionId": "missing"}, headers=_auth())
    assert missing.status_code == 404
