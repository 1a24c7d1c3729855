from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, JSON, ForeignKey, Text
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from mcqlab.database import Base

def generate_uuid():
    return str(uuid.uuid4())


class User(Base):
    """Mirror of a Clerk user. The primary key is the Clerk user id."""
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String, nullable=True)

    # One-time purchase balance (Stripe payment-mode checkouts)
    credits = Column(Integer, default=0, nullable=False)

    # Metadata
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    resources = relationship("Resource", back_populates="user")
    subscription = relationship("Subscription", back_populates="user", uselist=False)


# ============================================================================
# LEARNING CONTENT MODELS
# ============================================================================

class Resource(Base):
    """A submitted learning item: article, YouTube video, or document."""
    __tablename__ = "resources"

    id = Column(String, primary_key=True, default=generate_uuid)
    url = Column(String, nullable=False, default="")
    type = Column(String, nullable=False, index=True)  # "youtube", "article", "document"
    title = Column(String, nullable=True)
    content = Column(Text, nullable=True)  # Extracted text
    image_url = Column(String, nullable=True)
    tutorial = Column(Text, nullable=True)  # Generated markdown, attached after the quiz
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relationships
    user = relationship("User", back_populates="resources")
    quizzes = relationship("Quiz", back_populates="resource", cascade="all, delete-orphan")


class Quiz(Base):
    __tablename__ = "quizzes"

    id = Column(String, primary_key=True, default=generate_uuid)
    resource_id = Column(String, ForeignKey("resources.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    resource = relationship("Resource", back_populates="quizzes")
    mcqs = relationship("MCQ", back_populates="quiz", cascade="all, delete-orphan", order_by="MCQ.position")
    performances = relationship("Performance", back_populates="quiz", cascade="all, delete-orphan")


class MCQ(Base):
    __tablename__ = "mcqs"

    id = Column(String, primary_key=True, default=generate_uuid)
    quiz_id = Column(String, ForeignKey("quizzes.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)  # Order within the quiz
    question = Column(Text, nullable=False)
    option_a = Column(Text, nullable=False, default="")
    option_b = Column(Text, nullable=False, default="")
    option_c = Column(Text, nullable=False, default="")
    option_d = Column(Text, nullable=False, default="")
    correct_option = Column(Integer, nullable=False)  # 1-4; 0 when the answer matched no option

    # Relationships
    quiz = relationship("Quiz", back_populates="mcqs")

    @property
    def options(self):
        return [self.option_a, self.option_b, self.option_c, self.option_d]


class Performance(Base):
    """One scored attempt at a quiz."""
    __tablename__ = "performances"

    id = Column(String, primary_key=True, default=generate_uuid)
    quiz_id = Column(String, ForeignKey("quizzes.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    correct_answers = Column(Integer, nullable=False)
    total_questions = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relationships
    quiz = relationship("Quiz", back_populates="performances")

    @property
    def score(self) -> float:
        if not self.total_questions:
            return 0.0
        return round(self.correct_answers / self.total_questions * 100, 1)


class SubmissionRun(Base):
    """
    Saga log for one submission.
    Every completed step is recorded so a failure can be compensated.
    """
    __tablename__ = "submission_runs"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)

    # Status: running, completed, compensated, compensation_failed
    status = Column(String, nullable=False, default="running", index=True)
    completed_steps = Column(JSON, nullable=False, default=list)
    failed_step = Column(String, nullable=True)
    error = Column(Text, nullable=True)

    # Rows created by this run (kept after compensation for diagnostics)
    resource_id = Column(String, nullable=True)
    quiz_id = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    finished_at = Column(DateTime, nullable=True)


# ============================================================================
# MONETIZATION & SUBSCRIPTION MODELS
# ============================================================================

class Subscription(Base):
    """
    Current billing state for a user.
    Keyed by the internal user id for every provider and code path.
    """
    __tablename__ = "subscriptions"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, unique=True, index=True)

    # Provider: "lemonsqueezy" or "stripe"
    provider = Column(String, nullable=True)
    provider_subscription_id = Column(String, nullable=True, index=True)
    provider_customer_id = Column(String, nullable=True)

    status = Column(String, nullable=True, index=True)  # active, cancelled, paused, past_due, ...
    product_name = Column(String, nullable=True)
    price_id = Column(String, nullable=True)
    currency = Column(String, nullable=True)
    interval = Column(String, nullable=True)
    renews_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)
    cancelled = Column(Boolean, default=False)
    pause = Column(JSON, nullable=True)

    # Payment method metadata
    card_brand = Column(String, nullable=True)
    card_last_four = Column(String, nullable=True)

    # Metadata
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="subscription")


class UserUsage(Base):
    """
    Per-period submission counters for Pro users.
    """
    __tablename__ = "user_usage"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, unique=True, index=True)
    plan_type = Column(String, nullable=False, default="pro")
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    submission_count = Column(Integer, nullable=False, default=0)
    subscription_points = Column(Integer, nullable=False, default=100)

    # Metadata
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Payment(Base):
    """Historical payment records. Append-only."""
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=False, index=True)
    provider = Column(String, nullable=False, default="lemonsqueezy")
    amount = Column(Float, nullable=True)
    currency = Column(String, nullable=True)
    status = Column(String, nullable=True)
    store_id = Column(String, nullable=True)
    customer_id = Column(String, nullable=True)
    order_number = Column(String, nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True)


class Invoice(Base):
    """Stripe invoice records. Append-only."""
    __tablename__ = "invoices"

    id = Column(String, primary_key=True, default=generate_uuid)
    invoice_id = Column(String, nullable=False, index=True)
    subscription_id = Column(String, nullable=True, index=True)
    user_id = Column(String, nullable=True, index=True)
    amount_paid = Column(Integer, nullable=False, default=0)  # Minor units (cents)
    amount_due = Column(Integer, nullable=True)
    currency = Column(String, nullable=False)
    status = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
