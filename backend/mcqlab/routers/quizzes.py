"""
Quizzes Router

Quiz retrieval and scored attempts.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from mcqlab.database import get_db
from mcqlab.dependencies.auth import get_current_user
from mcqlab.models.models import Performance, Quiz, User
from mcqlab.schemas.requests import AttemptRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/quizzes", tags=["quizzes"])


def get_owned_quiz(db: Session, quiz_id: str, user: User) -> Quiz:
    quiz = db.query(Quiz).filter(Quiz.id == quiz_id, Quiz.user_id == user.id).first()
    if not quiz:
        raise HTTPException(status_code=404, detail="Quiz not found")
    return quiz


@router.get("/{quiz_id}")
def get_quiz(
    quiz_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Get a quiz with its resource, tutorial and questions.
    Correct answers are only revealed in the attempt result.
    """
    quiz = get_owned_quiz(db, quiz_id, current_user)
    resource = quiz.resource

    return {
        "id": quiz.id,
        "resource": {
            "id": resource.id,
            "title": resource.title,
            "url": resource.url,
            "type": resource.type,
            "imageUrl": resource.image_url,
        },
        "tutorial": resource.tutorial,
        "mcqs": [
            {
                "id": mcq.id,
                "question": mcq.question,
                "options": mcq.options,
            }
            for mcq in quiz.mcqs
        ],
        "createdAt": quiz.created_at.isoformat() if quiz.created_at else None,
    }


@router.post("/{quiz_id}/attempts")
def submit_attempt(
    quiz_id: str,
    request: AttemptRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Score an attempt and record it as a Performance.

    Every question must be answered; option numbers are 1-4.
    """
    quiz = get_owned_quiz(db, quiz_id, current_user)
    mcqs = quiz.mcqs

    if not mcqs:
        raise HTTPException(status_code=400, detail="This quiz has no questions")

    unanswered = [mcq.id for mcq in mcqs if mcq.id not in request.answers]
    if unanswered:
        raise HTTPException(status_code=400, detail="Please answer all questions before submitting.")

    known_ids = {mcq.id for mcq in mcqs}
    unknown = [answer_id for answer_id in request.answers if answer_id not in known_ids]
    if unknown:
        raise HTTPException(status_code=400, detail="Answers reference questions outside this quiz")

    results = []
    correct = 0
    for mcq in mcqs:
        selected = request.answers[mcq.id]
        is_correct = selected == mcq.correct_option
        if is_correct:
            correct += 1
        results.append({
            "mcqId": mcq.id,
            "selected": selected,
            "correctOption": mcq.correct_option,
            "isCorrect": is_correct,
        })

    performance = Performance(
        quiz_id=quiz.id,
        user_id=current_user.id,
        correct_answers=correct,
        total_questions=len(mcqs),
    )
    db.add(performance)
    db.commit()
    db.refresh(performance)

    logger.info(f"User {current_user.id} scored {correct}/{len(mcqs)} on quiz {quiz.id}")

    return {
        "performanceId": performance.id,
        "correctAnswers": correct,
        "totalQuestions": len(mcqs),
        "score": performance.score,
        "results": results,
    }
