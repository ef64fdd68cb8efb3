from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from edugrade.core.security import Role, create_access_token
from edugrade.core.utils import utcnow
from edugrade.db.session import get_db
from edugrade.main import app
from edugrade.models.exam_response import AttemptStatus, ExamResponse


def auth_header(user_id, role):
    token = create_access_token({"sub": user_id, "role": role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def lecturer_headers():
    return auth_header("lecturer-1", Role.LECTURER)


@pytest.fixture
def student_headers():
    return auth_header("student-1", Role.STUDENT)


class TestHealth:

    def test_liveness(self, client):
        assert client.get("/api/v1/health/live").json() == {"status": "ok"}

    def test_db(self, client):
        assert client.get("/api/v1/health/db").status_code == 200


class TestAuth:

    def test_missing_token(self, client):
        assert client.get("/api/v1/grades/courses/c1/columns").status_code in (401, 403)

    def test_bad_token(self, client):
        resp = client.get(
            "/api/v1/grades/courses/c1/columns",
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert resp.status_code == 401

    def test_unknown_role(self, client):
        resp = client.get(
            "/api/v1/grades/courses/c1/columns",
            headers={"Authorization": f"Bearer {create_access_token({'sub': 'u1', 'role': '9999'})}"},
        )
        assert resp.status_code == 401

    def test_student_cannot_create_columns(self, client, student_headers):
        resp = client.post(
            "/api/v1/grades/columns",
            json={"course_id": "c1", "name": "Quiz", "percentage": 10},
            headers=student_headers,
        )
        assert resp.status_code == 403


class TestGradeEndpoints:

    def test_column_over_100_is_rejected(self, client, lecturer_headers):
        ok = client.post(
            "/api/v1/grades/columns",
            json={"course_id": "c1", "name": "Exam", "percentage": 80, "type": "exam"},
            headers=lecturer_headers,
        )
        assert ok.status_code == 201

        resp = client.post(
            "/api/v1/grades/columns",
            json={"course_id": "c1", "name": "Quiz", "percentage": 30},
            headers=lecturer_headers,
        )
        assert resp.status_code == 400
        assert resp.json() == {"detail": "Total percentage would exceed 100%"}

    def test_set_score_and_read_final_grade(self, client, lecturer_headers, student_headers):
        column = client.post(
            "/api/v1/grades/columns",
            json={"course_id": "c1", "name": "Exam", "percentage": 50},
            headers=lecturer_headers,
        ).json()

        resp = client.put(
            "/api/v1/grades/student",
            json={"student_id": "student-1", "column_id": column["id"], "score": 90},
            headers=lecturer_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["final_grade"] == 45.0

        final = client.get(
            "/api/v1/grades/courses/c1/students/student-1/final", headers=student_headers
        )
        assert final.json() == {
            "student_id": "student-1",
            "course_id": "c1",
            "final_grade": 45.0,
            "letter_grade": "F",
        }

        other = client.get(
            "/api/v1/grades/courses/c1/students/student-2/final", headers=student_headers
        )
        assert other.status_code == 403

    @pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_score_is_rejected(self, client, lecturer_headers, literal):
        column = client.post(
            "/api/v1/grades/columns",
            json={"course_id": "c1", "name": "Quiz", "percentage": 20},
            headers=lecturer_headers,
        ).json()

        resp = client.put(
            "/api/v1/grades/student",
            content=(
                f'{{"student_id": "student-1", "column_id": "{column["id"]}", '
                f'"score": {literal}}}'
            ),
            headers={**lecturer_headers, "Content-Type": "application/json"},
        )
        assert resp.status_code == 422

        grades = client.get("/api/v1/grades/courses/c1", headers=lecturer_headers).json()
        assert grades == []

    def test_unknown_column_is_404(self, client, lecturer_headers):
        resp = client.put(
            "/api/v1/grades/student",
            json={"student_id": "s1", "column_id": "missing", "score": 50},
            headers=lecturer_headers,
        )
        assert resp.status_code == 404


class TestExamFlow:
    """Instructor builds and publishes an exam; a student takes it."""

    def test_end_to_end(self, client, lecturer_headers, student_headers):
        now = utcnow()
        exam = client.post(
            "/api/v1/exams/",
            json={
                "course_id": "c1",
                "title": "Quiz 1",
                "duration": 30,
                "start_time": (now - timedelta(minutes=5)).isoformat(),
                "end_time": (now + timedelta(hours=1)).isoformat(),
                "grade_category": "quiz",
            },
            headers=lecturer_headers,
        )
        assert exam.status_code == 201
        exam_id = exam.json()["id"]

        publish = client.post(f"/api/v1/exams/{exam_id}/publish", headers=lecturer_headers)
        assert publish.status_code == 400

        question = client.post(
            f"/api/v1/exams/{exam_id}/questions",
            json={
                "type": "Multiple_Choice",
                "prompt": "Pick B",
                "options": ["A", "B"],
                "correct_answer_index": 1,
                "points": 2,
            },
            headers=lecturer_headers,
        ).json()
        assert question["type"] == "multiple-choice"

        published = client.post(f"/api/v1/exams/{exam_id}/publish", headers=lecturer_headers)
        assert published.json()["status"] == "PUBLISHED"

        view = client.get(f"/api/v1/exams/{exam_id}/student-view", headers=student_headers).json()
        assert "correct_answer_index" not in view["questions"][0]

        started = client.post(f"/api/v1/attempts/exams/{exam_id}/start", headers=student_headers)
        assert started.status_code == 201
        again = client.post(f"/api/v1/attempts/exams/{exam_id}/start", headers=student_headers)
        assert again.status_code == 409

        submitted = client.post(
            "/api/v1/attempts/submit",
            json={"exam_id": exam_id, "answers": {question["id"]: "B"}},
            headers=student_headers,
        ).json()
        assert submitted["status"] == "GRADED"
        assert submitted["percentage"] == 100.0

        results = client.get(
            f"/api/v1/attempts/{submitted['id']}/results", headers=student_headers
        ).json()
        assert results["passed"] is True

        grades = client.get("/api/v1/grades/courses/c1", headers=lecturer_headers).json()
        assert grades[0]["student_id"] == "student-1"
        assert list(grades[0]["grades"].values()) == [100.0]

        stats = client.get(f"/api/v1/grading/exams/{exam_id}/stats", headers=lecturer_headers)
        assert stats.json()["graded_responses"] == 1

    def test_unknown_exam_is_404(self, client, lecturer_headers):
        resp = client.get("/api/v1/exams/missing", headers=lecturer_headers)
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Exam not found with ID: missing"


class TestGradingOwnership:
    """Lecturers only see and grade responses to their own exams."""

    @pytest.fixture
    def submitted(self, db_session, make_exam, answers_for):
        exam = make_exam()
        response = ExamResponse(
            exam_id=exam.id,
            student_id="student-1",
            course_id=exam.course_id,
            attempt_number=1,
            status=AttemptStatus.SUBMITTED,
            answers=answers_for(exam, "1", "true", "Paris"),
            question_scores={},
            max_score=exam.total_points,
        )
        db_session.add(response)
        db_session.commit()
        return exam, response

    @pytest.fixture
    def other_lecturer_headers(self):
        return auth_header("lecturer-2", Role.LECTURER)

    def test_other_lecturer_is_forbidden(self, client, submitted, other_lecturer_headers):
        exam, response = submitted
        requests = [
            ("get", f"/api/v1/grading/exams/{exam.id}/responses"),
            ("get", f"/api/v1/grading/responses/{response.id}"),
            ("post", f"/api/v1/grading/responses/{response.id}/auto-grade"),
            ("post", f"/api/v1/grading/exams/{exam.id}/auto-grade"),
            ("post", f"/api/v1/grading/exams/{exam.id}/auto-grade/async"),
            ("get", f"/api/v1/grading/exams/{exam.id}/stats"),
            ("get", f"/api/v1/grading/exams/{exam.id}/grading-stats"),
            ("post", f"/api/v1/grading/exams/{exam.id}/resync"),
        ]
        for method, url in requests:
            resp = getattr(client, method)(url, headers=other_lecturer_headers)
            assert resp.status_code == 403, url
            assert resp.json() == {"detail": "Not authorized to grade responses for this exam"}

    def test_owner_can_read_and_grade(self, client, submitted, lecturer_headers, no_job_queue):
        exam, response = submitted
        listed = client.get(
            f"/api/v1/grading/exams/{exam.id}/responses", headers=lecturer_headers
        ).json()
        assert [r["id"] for r in listed] == [response.id]

        graded = client.post(
            f"/api/v1/grading/responses/{response.id}/auto-grade", headers=lecturer_headers
        ).json()
        assert graded["status"] == "GRADED"

        queued = client.post(
            f"/api/v1/grading/exams/{exam.id}/auto-grade/async", headers=lecturer_headers
        )
        assert queued.status_code == 202
        assert no_job_queue[-1] == ("auto_grade_all", (exam.id,))
