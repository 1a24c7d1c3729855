# Load environment variables FIRST before any other imports
from dotenv import load_dotenv
load_dotenv()

import os
import logging
import sentry_sdk
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from mcqlab.database import engine, Base
from mcqlab.routers import clerk_webhook, extract, payments, performance, quizzes, resources, subscription, users, webhooks
from mcqlab.services.ai_generation import reset_generation_chain

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize Sentry for error monitoring
sentry_dsn = os.getenv("SENTRY_DSN")
if sentry_dsn:
    sentry_sdk.init(
        dsn=sentry_dsn,
        traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
        environment=os.getenv("ENVIRONMENT", "development"),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - runs on startup and shutdown."""
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready")

    yield  # Application runs here

    # SHUTDOWN: release LLM provider clients
    reset_generation_chain()
    logger.info("Shutting down...")

# OpenAPI tag metadata for organized documentation
tags_metadata = [
    {
        "name": "extract",
        "description": "Text extraction from article URLs, YouTube videos and uploaded documents.",
    },
    {
        "name": "resources",
        "description": "Resource submission (quiz and tutorial generation) and management.",
    },
    {
        "name": "quizzes",
        "description": "Quiz retrieval and scored attempts.",
    },
    {
        "name": "performance",
        "description": "Quiz attempt history and summary statistics.",
    },
    {
        "name": "subscription",
        "description": "Subscription state and submission limits.",
    },
    {
        "name": "payments",
        "description": "Stripe webhooks and Lemon Squeezy checkout.",
    },
    {
        "name": "webhooks",
        "description": "Lemon Squeezy and Clerk webhooks.",
    },
]

app = FastAPI(
    title="MCQ Lab API",
    description="""
## MCQ Lab

Turn articles, YouTube videos and documents into 20-question multiple choice
quizzes with a study tutorial.

### Plans
| Plan | Submissions |
|------|-------------|
| Basic | 1 per day |
| Pro | 100 per billing period |
    """,
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=tags_metadata,
)

# CORS middleware for Next.js frontend
ALLOWED_ORIGINS = [
    "http://localhost:3000",  # Next.js dev server
    "http://localhost:3001",  # Next.js dev server (alternate port)
]

# Production and preview origins from environment
extra_origins = os.getenv("CORS_ALLOWED_ORIGINS", "")
if extra_origins:
    ALLOWED_ORIGINS.extend([o.strip() for o in extra_origins.split(",") if o.strip()])

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "Accept"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors as {"error": message}; dict details are sent as-is."""
    content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for better error logging"""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    sentry_sdk.capture_exception(exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Include routers
app.include_router(extract.router)  # URL and document extraction
app.include_router(resources.router)  # Submission saga
app.include_router(quizzes.router)
app.include_router(performance.router)
app.include_router(subscription.router)  # Limits & billing state
app.include_router(users.router)
app.include_router(payments.router)  # Stripe webhook + Lemon Squeezy checkout
app.include_router(webhooks.router)  # Lemon Squeezy webhook
app.include_router(clerk_webhook.router)  # Clerk user sync


@app.get("/")
def root():
    return {
        "message": "MCQ Lab API",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health")
def health_check():
    return {"status": "healthy"}
