"""
Performance Router

Quiz attempt history for the dashboard.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from mcqlab.database import get_db
from mcqlab.dependencies.auth import get_current_user
from mcqlab.models.models import Performance, Quiz, Resource, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/performance", tags=["performance"])


@router.get("")
def list_performance(
    limit: int = Query(default=50, le=200),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List the caller's quiz attempts, newest first."""
    rows = (
        db.query(Performance, Resource.title)
        .join(Quiz, Performance.quiz_id == Quiz.id)
        .join(Resource, Quiz.resource_id == Resource.id)
        .filter(Performance.user_id == current_user.id)
        .order_by(Performance.created_at.desc())
        .limit(limit)
        .all()
    )

    return {
        "performances": [
            {
                "id": performance.id,
                "quizId": performance.quiz_id,
                "resourceTitle": title,
                "correctAnswers": performance.correct_answers,
                "totalQuestions": performance.total_questions,
                "score": performance.score,
                "createdAt": performance.created_at.isoformat() if performance.created_at else None,
            }
            for performance, title in rows
        ]
    }


@router.get("/summary")
def performance_summary(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Aggregate attempt statistics for the caller."""
    attempts, correct, total = db.query(
        func.count(Performance.id),
        func.coalesce(func.sum(Performance.correct_answers), 0),
        func.coalesce(func.sum(Performance.total_questions), 0),
    ).filter(Performance.user_id == current_user.id).one()

    performances = db.query(Performance).filter(Performance.user_id == current_user.id).all()
    best_score = max((p.score for p in performances), default=0.0)

    return {
        "attempts": attempts,
        "correctAnswers": int(correct),
        "totalQuestions": int(total),
        "averageScore": round(correct / total * 100, 1) if total else 0.0,
        "bestScore": best_score,
        "resources": db.query(Resource).filter(Resource.user_id == current_user.id).count(),
    }


@router.delete("/{performance_id}")
def delete_performance(
    performance_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    performance = db.query(Performance).filter(
        Performance.id == performance_id,
        Performance.user_id == current_user.id
    ).first()

    if not performance:
        raise HTTPException(status_code=404, detail="Performance record not found")

    db.delete(performance)
    db.commit()

    return {"success": True, "deleted": performance_id}
