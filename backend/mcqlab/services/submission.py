"""
Submission Service

Runs a resource submission as a saga of recorded steps:

    create_resource -> generate_mcqs -> create_quiz -> create_mcqs
        -> generate_tutorial -> attach_tutorial

Each completed step is appended to the ``SubmissionRun`` row and committed.
When a step fails the run records the failed step and error, then
compensates the completed steps in reverse order (MCQs, Quiz and Resource
created by this run are deleted). The run ends as "compensated", or
"compensation_failed" if the cleanup itself raised, and the failure is
re-raised to the caller as ``SubmissionError``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from mcqlab.models.models import MCQ, Quiz, Resource, SubmissionRun, User
from mcqlab.schemas.requests import SubmissionRequest
from mcqlab.services.ai_generation import (
    GeneratedMCQ,
    GenerationChain,
    GenerationError,
    generate_mcqs,
    generate_tutorial,
    to_mcq_fields,
)
from mcqlab.services.content_extraction import (
    ExtractedContent,
    ExtractionError,
    extract_from_url,
    is_youtube_url,
    sanitize_text,
)

logger = logging.getLogger(__name__)

STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_COMPENSATED = "compensated"
STATUS_COMPENSATION_FAILED = "compensation_failed"

STEP_MESSAGES = {
    "generate_mcqs": "All AI models failed to generate MCQs.",
    "generate_tutorial": "All AI models failed to generate the tutorial.",
}


class SubmissionError(Exception):
    """A submission failed after the saga started."""

    def __init__(self, message: str, run_id: Optional[str] = None, failed_step: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.run_id = run_id
        self.failed_step = failed_step


@dataclass
class SubmissionResult:
    resource_id: str
    quiz_id: str
    question_count: int
    run_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resourceId": self.resource_id,
            "quizId": self.quiz_id,
            "questionCount": self.question_count,
            "runId": self.run_id,
        }


@dataclass
class _SagaState:
    source: ExtractedContent
    resource_type: str
    resource_id: Optional[str] = None
    quiz_id: Optional[str] = None
    mcqs: List[GeneratedMCQ] = field(default_factory=list)
    tutorial: Optional[str] = None


def resolve_resource_type(request: SubmissionRequest) -> str:
    if request.type:
        return request.type
    if request.url and is_youtube_url(request.url):
        return "youtube"
    if request.url:
        return "article"
    return "document"


class SubmissionSaga:
    """
    Usage:
        saga = SubmissionSaga(db, chain)
        result = saga.run(user, request)
    """

    def __init__(
        self,
        db: Session,
        chain: GenerationChain,
        extract: Callable[[str], ExtractedContent] = extract_from_url,
    ):
        self.db = db
        self.chain = chain
        self.extract = extract

    def _steps(self):
        return [
            ("create_resource", self._create_resource),
            ("generate_mcqs", self._generate_mcqs),
            ("create_quiz", self._create_quiz),
            ("create_mcqs", self._create_mcqs),
            ("generate_tutorial", self._generate_tutorial),
            ("attach_tutorial", self._attach_tutorial),
        ]

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def prepare_source(self, request: SubmissionRequest) -> ExtractedContent:
        """
        Resolve the text to generate from.

        Raises:
            ExtractionError: No usable input, or the URL could not be extracted
        """
        if request.content:
            return ExtractedContent(
                content=sanitize_text(request.content),
                title=request.title or "Untitled Resource",
                image_url=request.image_url,
                url=request.url or "",
            )

        if not request.url:
            raise ExtractionError("Either content or a URL is required", status_code=400)

        extracted = self.extract(request.url)
        if request.title:
            extracted.title = request.title
        if request.image_url:
            extracted.image_url = request.image_url
        extracted.url = request.url
        return extracted

    def run(self, user: User, request: SubmissionRequest) -> SubmissionResult:
        source = self.prepare_source(request)
        if not source.content:
            raise ExtractionError("No content could be extracted from this resource", status_code=400)

        state = _SagaState(source=source, resource_type=resolve_resource_type(request))

        run = SubmissionRun(user_id=user.id, status=STATUS_RUNNING, completed_steps=[])
        self.db.add(run)
        self.db.commit()
        logger.info(f"Submission run {run.id} started for user {user.id} ({state.resource_type})")

        for name, step in self._steps():
            try:
                step(user, state)
                run.completed_steps = list(run.completed_steps or []) + [name]
                run.resource_id = state.resource_id
                run.quiz_id = state.quiz_id
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                self._fail(run, name, e, state)
                message = STEP_MESSAGES.get(name) if isinstance(e, GenerationError) else None
                raise SubmissionError(
                    message or f"Submission failed at step '{name}'",
                    run_id=run.id,
                    failed_step=name,
                ) from e

        run.status = STATUS_COMPLETED
        run.finished_at = datetime.utcnow()
        self.db.commit()
        logger.info(f"Submission run {run.id} completed: resource={state.resource_id} quiz={state.quiz_id}")

        return SubmissionResult(
            resource_id=state.resource_id,
            quiz_id=state.quiz_id,
            question_count=len(state.mcqs),
            run_id=run.id,
        )

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _create_resource(self, user: User, state: _SagaState) -> None:
        resource = Resource(
            url=state.source.url or "",
            type=state.resource_type,
            title=state.source.title,
            content=state.source.content,
            image_url=state.source.image_url,
            user_id=user.id,
        )
        self.db.add(resource)
        self.db.flush()
        state.resource_id = resource.id

    def _generate_mcqs(self, user: User, state: _SagaState) -> None:
        state.mcqs = generate_mcqs(self.chain, state.source.content)

    def _create_quiz(self, user: User, state: _SagaState) -> None:
        quiz = Quiz(resource_id=state.resource_id, user_id=user.id)
        self.db.add(quiz)
        self.db.flush()
        state.quiz_id = quiz.id

    def _create_mcqs(self, user: User, state: _SagaState) -> None:
        for position, generated in enumerate(state.mcqs):
            self.db.add(MCQ(quiz_id=state.quiz_id, position=position, **to_mcq_fields(generated)))
        self.db.flush()

    def _generate_tutorial(self, user: User, state: _SagaState) -> None:
        state.tutorial = generate_tutorial(self.chain, state.source.content)

    def _attach_tutorial(self, user: User, state: _SagaState) -> None:
        resource = self.db.query(Resource).filter(Resource.id == state.resource_id).first()
        if not resource:
            raise ValueError(f"Resource {state.resource_id} disappeared before tutorial attach")
        resource.tutorial = state.tutorial

    # -------------------------------------------------------------------------
    # Compensation
    # -------------------------------------------------------------------------

    def _compensations(self, state: _SagaState) -> Dict[str, Callable[[], None]]:
        return {
            "create_mcqs": lambda: self.db.query(MCQ).filter(
                MCQ.quiz_id == state.quiz_id
            ).delete(synchronize_session=False),
            "create_quiz": lambda: self.db.query(Quiz).filter(
                Quiz.id == state.quiz_id
            ).delete(synchronize_session=False),
            "create_resource": lambda: self.db.query(Resource).filter(
                Resource.id == state.resource_id
            ).delete(synchronize_session=False),
        }

    def _fail(self, run: SubmissionRun, step: str, error: Exception, state: _SagaState) -> None:
        logger.error(f"Submission run {run.id} failed at step '{step}': {error}")
        run.failed_step = step
        run.error = str(error)[:2000]

        compensations = self._compensations(state)
        try:
            for completed in reversed(list(run.completed_steps or [])):
                undo = compensations.get(completed)
                if undo:
                    undo()
            run.status = STATUS_COMPENSATED
            run.finished_at = datetime.utcnow()
            self.db.commit()
            logger.info(f"Submission run {run.id} compensated")
        except Exception as cleanup_error:
            self.db.rollback()
            logger.exception(f"Compensation failed for submission run {run.id}: {cleanup_error}")
            run.failed_step = step
            run.error = f"{str(error)[:1000]} | compensation: {cleanup_error}"
            run.status = STATUS_COMPENSATION_FAILED
            run.finished_at = datetime.utcnow()
            self.db.commit()
