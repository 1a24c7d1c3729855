"""
Resources Router

Submission and management of learning resources.

POST /api/resources runs the submission saga: entitlement check, content
extraction (when only a URL is sent), MCQ and tutorial generation, and
persistence of the Resource, Quiz and MCQ rows.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from mcqlab.database import get_db
from mcqlab.dependencies.auth import get_current_user
from mcqlab.models.models import Quiz, Resource, User
from mcqlab.schemas.requests import SubmissionRequest
from mcqlab.services.ai_generation import GenerationChain, get_generation_chain
from mcqlab.services.content_extraction import ExtractionError
from mcqlab.services.entitlements import EntitlementError, enforce_submission_limits, record_submission
from mcqlab.services.submission import SubmissionError, SubmissionSaga

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/resources", tags=["resources"])


def serialize_resource(resource: Resource, include_content: bool = False) -> dict:
    quiz = resource.quizzes[0] if resource.quizzes else None
    data = {
        "id": resource.id,
        "url": resource.url,
        "type": resource.type,
        "title": resource.title,
        "imageUrl": resource.image_url,
        "quizId": quiz.id if quiz else None,
        "createdAt": resource.created_at.isoformat() if resource.created_at else None,
    }
    if include_content:
        data["content"] = resource.content
        data["tutorial"] = resource.tutorial
    return data


def get_owned_resource(db: Session, resource_id: str, user: User) -> Resource:
    resource = db.query(Resource).filter(
        Resource.id == resource_id,
        Resource.user_id == user.id
    ).first()
    if not resource:
        raise HTTPException(status_code=404, detail="Resource not found")
    return resource


@router.post("")
def submit_resource(
    request: SubmissionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    chain: GenerationChain = Depends(get_generation_chain),
):
    """
    Submit a resource and generate its quiz and tutorial.

    Returns the new resource and quiz ids plus the saga run id.
    """
    try:
        check = enforce_submission_limits(db, current_user)
    except EntitlementError as e:
        raise HTTPException(
            status_code=403,
            detail={"error": e.check.message, "canSubmit": False, "isPro": e.check.is_pro},
        )

    saga = SubmissionSaga(db, chain)
    try:
        result = saga.run(current_user, request)
    except ExtractionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except SubmissionError as e:
        raise HTTPException(
            status_code=500,
            detail={"error": e.message, "runId": e.run_id, "failedStep": e.failed_step},
        )

    if check.is_pro:
        record_submission(db, current_user.email)

    return result.to_dict()


@router.get("")
def list_resources(
    limit: int = Query(default=50, le=200),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List the caller's resources, newest first."""
    resources = db.query(Resource).filter(
        Resource.user_id == current_user.id
    ).order_by(Resource.created_at.desc()).limit(limit).all()

    return {"resources": [serialize_resource(r) for r in resources]}


@router.get("/{resource_id}")
def get_resource(
    resource_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    resource = get_owned_resource(db, resource_id, current_user)
    return serialize_resource(resource, include_content=True)


@router.delete("/{resource_id}")
def delete_resource(
    resource_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete a resource with its quizzes, questions and attempts."""
    resource = get_owned_resource(db, resource_id, current_user)
    quiz_count = db.query(Quiz).filter(Quiz.resource_id == resource.id).count()

    db.delete(resource)
    db.commit()
    logger.info(f"User {current_user.id} deleted resource {resource_id} ({quiz_count} quizzes)")

    return {"success": True, "deleted": resource_id}
