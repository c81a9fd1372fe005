"""
SQLAlchemy ORM models for the spending coach pipeline.

Includes:
    - Family, User, Account, Transaction, Goal (inputs owned by the host app)
    - FinancialPersonality (one per user, upserted)
    - BudgetRecommendation (batch of three, at most one active)
    - SpendingInsight (append-only, one per analyzed transaction)
    - SpendingHabit, AiCoachingSession, AiNotification

Author: Smart Financial Coach Team
"""

from datetime import datetime, timedelta, timezone
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime,
    ForeignKey, Text, JSON, Index, UniqueConstraint,
)
from sqlalchemy import Enum as SAEnum
from database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# Enumerations
# =============================================================================

class PersonalityType(str, Enum):
    CONSERVATIVE_SAVER = "conservative_saver"
    BALANCED_PLANNER = "balanced_planner"
    GROWTH_SEEKER = "growth_seeker"
    IMPULSIVE_SPENDER = "impulsive_spender"
    ANXIOUS_AVOIDER = "anxious_avoider"
    SOCIAL_SPENDER = "social_spender"
    GOAL_ORIENTED = "goal_oriented"
    LIFESTYLE_FOCUSED = "lifestyle_focused"


class RecommendationType(str, Enum):
    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"


class PatternType(str, Enum):
    EMOTIONAL_SPENDING = "emotional_spending"
    IMPULSE_PURCHASE = "impulse_purchase"
    STRESS_SPENDING = "stress_spending"
    CELEBRATION_SPENDING = "celebration_spending"
    SOCIAL_SPENDING = "social_spending"
    SUBSCRIPTION_CREEP = "subscription_creep"
    LIFESTYLE_INFLATION = "lifestyle_inflation"
    BUDGET_DRIFT = "budget_drift"
    SEASONAL_PATTERN = "seasonal_pattern"
    WEEKEND_SPLURGE = "weekend_splurge"


class EmotionalContext(str, Enum):
    HAPPY = "happy"
    STRESSED = "stressed"
    BORED = "bored"
    ANXIOUS = "anxious"
    EXCITED = "excited"
    SAD = "sad"
    FRUSTRATED = "frustrated"
    CELEBRATORY = "celebratory"
    PEER_PRESSURE = "peer_pressure"
    ROUTINE = "routine"


class SessionType(str, Enum):
    DAILY_CHECKIN = "daily_checkin"
    CRISIS_INTERVENTION = "crisis_intervention"
    GOAL_REVIEW = "goal_review"
    PURCHASE_GUIDANCE = "purchase_guidance"
    HABIT_COACHING = "habit_coaching"
    MOTIVATION_BOOST = "motivation_boost"
    EDUCATIONAL_CONTENT = "educational_content"
    CELEBRATION = "celebration"


class NotificationType(str, Enum):
    SPENDING_ALERT = "spending_alert"
    GOAL_PROGRESS = "goal_progress"
    HABIT_REMINDER = "habit_reminder"
    BUDGET_WARNING = "budget_warning"
    ACHIEVEMENT_UNLOCK = "achievement_unlock"
    COACHING_SUGGESTION = "coaching_suggestion"
    CRISIS_ALERT = "crisis_alert"
    CELEBRATION = "celebration"
    EDUCATIONAL_TIP = "educational_tip"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class AccountType(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT_CARD = "credit_card"
    LOAN = "loan"


class ResponseSource(str, Enum):
    AI = "ai"
    FALLBACK = "fallback"


# Pattern types that warrant a crisis intervention when confidently detected
HIGH_RISK_PATTERNS = frozenset({
    PatternType.EMOTIONAL_SPENDING,
    PatternType.IMPULSE_PURCHASE,
    PatternType.STRESS_SPENDING,
})
INTERVENTION_CONFIDENCE = 70

# A profile older than this must be re-inferred before use
PROFILE_FRESHNESS = timedelta(days=7)


def _enum_column(enum_cls, **kwargs):
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
        **kwargs,
    )


# =============================================================================
# Host application entities
# =============================================================================

class Family(Base):
    """Household that owns accounts; users belong to a family."""
    __tablename__ = "families"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String)
    created_at = Column(DateTime, default=utcnow)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    family_id = Column(Integer, ForeignKey("families.id"), index=True)
    email = Column(String, unique=True)
    name = Column(String)
    created_at = Column(DateTime, default=utcnow)


class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    family_id = Column(Integer, ForeignKey("families.id"), nullable=False, index=True)
    name = Column(String)
    account_type = Column(_enum_column(AccountType), default=AccountType.CHECKING, nullable=False)


class Transaction(Base):
    """Signed ledger entry: negative amounts are expenses, positive are income."""
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    # Stamped once at ingestion by the ownership resolver
    user_id = Column(Integer, ForeignKey("users.id"), index=True)
    occurred_at = Column(DateTime, nullable=False)
    amount = Column(Float, nullable=False)
    category = Column(String)
    merchant = Column(String)
    description = Column(String)

    __table_args__ = (
        Index("ix_transactions_user_occurred", "user_id", "occurred_at"),
    )


class Goal(Base):
    """User savings goal, read by the goal review coaching session."""
    __tablename__ = "goals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    target_amount = Column(Float, nullable=False)
    current_amount = Column(Float, default=0.0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)


# =============================================================================
# Pipeline entities
# =============================================================================

class FinancialPersonality(Base):
    """Inferred spending personality; exactly one row per user, overwritten on re-inference."""
    __tablename__ = "financial_personalities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    personality_type = Column(_enum_column(PersonalityType), nullable=False)
    risk_tolerance = Column(Integer, default=5)  # 1-10
    discipline_level = Column(Integer, default=5)  # 1-10
    spending_triggers = Column(JSON, default=list)
    financial_traumas = Column(JSON, default=list)
    lifestyle_preferences = Column(JSON, default=dict)
    confidence_score = Column(Float, default=0.0)  # 0-100
    analysis_summary = Column(Text)
    last_analyzed_at = Column(DateTime, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_financial_personalities_user"),
        {"sqlite_autoincrement": True},
    )

    def is_current(self, now: datetime = None) -> bool:
        """True while the analysis is at most seven days old."""
        if self.last_analyzed_at is None:
            return False
        now = now or utcnow()
        return now - self.last_analyzed_at <= PROFILE_FRESHNESS

    @property
    def risk_averse(self) -> bool:
        return self.risk_tolerance <= 3

    @property
    def high_discipline(self) -> bool:
        return self.discipline_level >= 7

    @property
    def needs_frequent_coaching(self) -> bool:
        return (
            self.discipline_level <= 4
            or "emotional_spending" in (self.spending_triggers or [])
        )


class BudgetRecommendation(Base):
    """One of the three budget archetypes generated together for a user."""
    __tablename__ = "budget_recommendations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    recommendation_type = Column(_enum_column(RecommendationType), nullable=False)
    mandatory_allocation = Column(Float, nullable=False)
    desires_allocation = Column(Float, nullable=False)
    investment_allocation = Column(Float, nullable=False)
    confidence_score = Column(Float, default=75.0)
    rationale = Column(Text)
    category_breakdown = Column(JSON, default=dict)
    is_active = Column(Boolean, default=False, nullable=False)
    adopted_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_budget_recommendations_user_active", "user_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    @property
    def total_allocation(self) -> float:
        return self.mandatory_allocation + self.desires_allocation + self.investment_allocation


class SpendingInsight(Base):
    """Classified behavioral pattern attached to one analyzed transaction."""
    __tablename__ = "spending_insights"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    transaction_id = Column(Integer, ForeignKey("transactions.id"))
    pattern_type = Column(_enum_column(PatternType), nullable=False)
    emotional_context = Column(_enum_column(EmotionalContext))
    trigger_identification = Column(JSON, default=list)
    ai_recommendation = Column(Text)
    confidence_score = Column(Float, nullable=False)
    user_acknowledged = Column(Boolean, default=False)
    acknowledged_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_spending_insights_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    @property
    def high_confidence(self) -> bool:
        return self.confidence_score >= INTERVENTION_CONFIDENCE

    @property
    def requires_intervention(self) -> bool:
        # Recomputed from stored fields; the model's own flag is never persisted
        return PatternType(self.pattern_type) in HIGH_RISK_PATTERNS and self.high_confidence


class SpendingHabit(Base):
    """Tracked recurring behavior with streak bookkeeping."""
    __tablename__ = "spending_habits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    habit_type = Column(String, nullable=False)  # daily_coffee, lunch_out, ...
    category = Column(String, nullable=False)
    average_amount = Column(Float, nullable=False)
    frequency_per_week = Column(Float, default=0.0)
    current_streak = Column(Integer, default=0)
    longest_streak = Column(Integer, default=0)
    is_positive_habit = Column(Boolean, default=True)
    last_occurrence_at = Column(DateTime)
    ai_suggestions = Column(JSON, default=list)
    created_at = Column(DateTime, default=utcnow)

    @property
    def weekly_cost(self) -> float:
        return self.average_amount * self.frequency_per_week

    @property
    def monthly_cost(self) -> float:
        return self.weekly_cost * 4.33  # average weeks per month

    @property
    def yearly_cost(self) -> float:
        return self.weekly_cost * 52

    @property
    def habit_strength(self) -> float:
        consistency_score = min(self.frequency_per_week / 7.0, 1.0) * 100
        streak_score = min(self.current_streak / 30.0, 1.0) * 100
        return (consistency_score + streak_score) / 2


class AiCoachingSession(Base):
    """One coaching exchange; the audit trail and the target of later feedback."""
    __tablename__ = "ai_coaching_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    session_type = Column(_enum_column(SessionType), nullable=False)
    context_data = Column(JSON, default=dict)
    ai_response = Column(Text, nullable=False)
    response_source = Column(_enum_column(ResponseSource), default=ResponseSource.AI)
    satisfaction_rating = Column(Integer)  # 1-5
    user_feedback = Column(Text)
    action_taken = Column(Boolean, default=False)
    action_details = Column(Text)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_ai_coaching_sessions_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    @property
    def positive_feedback(self) -> bool:
        return self.satisfaction_rating is not None and self.satisfaction_rating >= 4


class AiNotification(Base):
    """Queued message for the user, optionally scheduled for later delivery."""
    __tablename__ = "ai_notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    notification_type = Column(_enum_column(NotificationType), nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(_enum_column(NotificationPriority), default=NotificationPriority.MEDIUM)
    action_data = Column(JSON, default=dict)
    read = Column(Boolean, default=False)
    read_at = Column(DateTime)
    scheduled_for = Column(DateTime, index=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_ai_notifications_user_read", "user_id", "read"),
        {"sqlite_autoincrement": True},
    )

    @property
    def high_priority(self) -> bool:
        return self.priority in (NotificationPriority.HIGH, NotificationPriority.URGENT)

    def ready_to_send(self, now: datetime = None) -> bool:
        now = now or utcnow()
        return self.scheduled_for is None or self.scheduled_for <= now
