"""Backend services for the spending coach pipeline."""

from .ai_service import AIService, ReasoningError, MalformedResponseError
from .outcomes import Success, Fallback, Suppressed, Skipped, produced
from .personality_analyzer import PersonalityAnalyzer
from .budget_engine import BudgetRecommendationEngine
from .insight_analyzer import TransactionInsightAnalyzer
from .financial_coach import FinancialCoach, UnsupportedSessionType, should_generate_daily_checkin
from .feedback import FeedbackService, FeedbackResult, FeedbackStatus
from .habit_tracker import HabitTracker, advance_streak
from .notifier import Notifier
from .ownership import resolve_owner, claim_transaction, OwnerFound, OwnerAmbiguous, NoOwner

__all__ = [
    "AIService",
    "ReasoningError",
    "MalformedResponseError",
    "Success",
    "Fallback",
    "Suppressed",
    "Skipped",
    "produced",
    "PersonalityAnalyzer",
    "BudgetRecommendationEngine",
    "TransactionInsightAnalyzer",
    "FinancialCoach",
    "UnsupportedSessionType",
    "should_generate_daily_checkin",
    "FeedbackService",
    "FeedbackResult",
    "FeedbackStatus",
    "HabitTracker",
    "advance_streak",
    "Notifier",
    "resolve_owner",
    "claim_transaction",
    "OwnerFound",
    "OwnerAmbiguous",
    "NoOwner",
]
