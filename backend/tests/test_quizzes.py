"""
Tests for quiz retrieval, scored attempts and performance history.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from mcqlab.models.models import Performance, Quiz, User


def all_correct(quiz: Quiz) -> dict:
    return {mcq.id: mcq.correct_option for mcq in quiz.mcqs}


class TestGetQuiz:

    @pytest.mark.unit
    def test_quiz_hides_correct_answers(self, auth_client: TestClient, test_quiz: Quiz):
        response = auth_client.get(f"/api/quizzes/{test_quiz.id}")

        assert response.status_code == 200
        data = response.json()
        assert data["resource"]["title"] == "Photosynthesis"
        assert data["tutorial"].startswith("# Photosynthesis")
        assert [m["question"] for m in data["mcqs"]] == ["Question 0?", "Question 1?", "Question 2?"]
        assert data["mcqs"][0]["options"] == ["A", "B", "C", "D"]
        assert all("correctOption" not in m for m in data["mcqs"])

    @pytest.mark.unit
    def test_other_users_quiz_is_404(self, client: TestClient, test_quiz: Quiz, other_user: User):
        from mcqlab.main import app
        from mcqlab.dependencies.auth import get_current_user

        app.dependency_overrides[get_current_user] = lambda: other_user
        response = client.get(f"/api/quizzes/{test_quiz.id}")
        assert response.status_code == 404
        assert response.json() == {"error": "Quiz not found"}


class TestAttempts:

    @pytest.mark.unit
    def test_perfect_attempt(self, auth_client: TestClient, db: Session, test_quiz: Quiz):
        response = auth_client.post(
            f"/api/quizzes/{test_quiz.id}/attempts",
            json={"answers": all_correct(test_quiz)},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["correctAnswers"] == 3
        assert data["totalQuestions"] == 3
        assert data["score"] == 100.0
        assert all(r["isCorrect"] for r in data["results"])
        assert db.query(Performance).filter(Performance.id == data["performanceId"]).count() == 1

    @pytest.mark.unit
    def test_all_wrong_attempt(self, auth_client: TestClient, test_quiz: Quiz):
        answers = {mcq.id: 4 for mcq in test_quiz.mcqs}

        response = auth_client.post(f"/api/quizzes/{test_quiz.id}/attempts", json={"answers": answers})

        data = response.json()
        assert data["correctAnswers"] == 0
        assert data["score"] == 0.0
        assert data["results"][1]["correctOption"] == 2

    @pytest.mark.unit
    def test_one_of_three_rounds_score(self, auth_client: TestClient, test_quiz: Quiz):
        answers = {mcq.id: 1 for mcq in test_quiz.mcqs}
        data = auth_client.post(f"/api/quizzes/{test_quiz.id}/attempts", json={"answers": answers}).json()
        assert data["correctAnswers"] == 1
        assert data["score"] == 33.3

    @pytest.mark.unit
    def test_unanswered_question_is_400(self, auth_client: TestClient, db: Session, test_quiz: Quiz):
        answers = all_correct(test_quiz)
        answers.pop(test_quiz.mcqs[0].id)

        response = auth_client.post(f"/api/quizzes/{test_quiz.id}/attempts", json={"answers": answers})

        assert response.status_code == 400
        assert response.json() == {"error": "Please answer all questions before submitting."}
        assert db.query(Performance).count() == 0

    @pytest.mark.unit
    def test_unknown_question_id_is_400(self, auth_client: TestClient, test_quiz: Quiz):
        answers = all_correct(test_quiz)
        answers["not-a-question"] = 1
        response = auth_client.post(f"/api/quizzes/{test_quiz.id}/attempts", json={"answers": answers})
        assert response.status_code == 400


class TestPerformance:

    def _attempt(self, client: TestClient, quiz: Quiz, answers: dict) -> dict:
        return client.post(f"/api/quizzes/{quiz.id}/attempts", json={"answers": answers}).json()

    @pytest.mark.unit
    def test_history_lists_attempts_with_resource_title(self, auth_client: TestClient, test_quiz: Quiz):
        self._attempt(auth_client, test_quiz, all_correct(test_quiz))

        response = auth_client.get("/api/performance")

        assert response.status_code == 200
        performances = response.json()["performances"]
        assert len(performances) == 1
        assert performances[0]["resourceTitle"] == "Photosynthesis"
        assert performances[0]["quizId"] == test_quiz.id

    @pytest.mark.unit
    def test_summary(self, auth_client: TestClient, test_quiz: Quiz):
        self._attempt(auth_client, test_quiz, all_correct(test_quiz))
        self._attempt(auth_client, test_quiz, {mcq.id: 1 for mcq in test_quiz.mcqs})

        data = auth_client.get("/api/performance/summary").json()

        assert data["attempts"] == 2
        assert data["correctAnswers"] == 4
        assert data["totalQuestions"] == 6
        assert data["averageScore"] == 66.7
        assert data["bestScore"] == 100.0
        assert data["resources"] == 1

    @pytest.mark.unit
    def test_empty_summary(self, auth_client: TestClient):
        data = auth_client.get("/api/performance/summary").json()
        assert data["attempts"] == 0
        assert data["averageScore"] == 0.0

    @pytest.mark.unit
    def test_delete_performance(self, auth_client: TestClient, db: Session, test_quiz: Quiz):
        performance_id = self._attempt(auth_client, test_quiz, all_correct(test_quiz))["performanceId"]

        response = auth_client.delete(f"/api/performance/{performance_id}")

        assert response.status_code == 200
        assert db.query(Performance).count() == 0
        assert auth_client.delete(f"/api/performance/{performance_id}").status_code == 404
