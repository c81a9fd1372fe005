"""
Module: insight_analyzer.py
Description: Classifies the behavioral pattern behind a single transaction.

Only screened-in expenses of users with a current personality profile are
analyzed. When the reasoning model fails or answers outside the schema the
analyzer suppresses the insight instead of guessing: a wrong insight is
worse than none.

Author: Smart Financial Coach Team
"""

from datetime import datetime, timedelta
from typing import Optional

from pydantic import ValidationError

from models import PatternType, EmotionalContext, Transaction, FinancialPersonality, utcnow
from repository import Repository
from schemas import TransactionAnalysis
from .ai_service import ReasoningCapability, ReasoningError, parse_json_response
from .feature_extractor import total_spend
from .observability import logger, metrics, timed, log_suppressed, log_skipped
from .outcomes import Outcome, Success, Suppressed, Skipped
from .screening import screen_transaction

RECENT_WINDOW = timedelta(days=7)
CATEGORY_WINDOW = timedelta(days=30)
SIMILAR_LIMIT = 5
TEMPERATURE = 0.3
MAX_TOKENS = 800

COMPONENT = "insight"


class TransactionInsightAnalyzer:
    """Turns one transaction into at most one SpendingInsight."""

    SYSTEM_PROMPT = f"""You are an expert financial behavior analyst. Analyze individual transactions to identify spending patterns and provide insights.

Respond with ONLY a JSON object (no prose, no code fences) containing:
{{
  "pattern_type": "one of: {', '.join(p.value for p in PatternType)}",
  "emotional_context": "one of: {', '.join(e.value for e in EmotionalContext)} or null",
  "trigger_identification": ["array", "of", "triggers"],
  "ai_recommendation": "brief actionable advice",
  "confidence_score": number 0-100,
  "requires_intervention": true/false
}}

Focus on identifying:
- Emotional spending patterns
- Impulse purchases
- Stress-related spending
- Social spending influences
- Habit-based purchases
- Budget deviation patterns

Consider the user's personality type and known triggers."""

    def __init__(self, repo: Repository, reasoner: ReasoningCapability):
        self.repo = repo
        self.reasoner = reasoner

    @timed("insight.analyze")
    async def analyze(
        self, user_id: int, transaction: Transaction, now: Optional[datetime] = None
    ) -> Outcome:
        """
        Analyze a transaction owned by `user_id`.

        Returns:
            Skipped when the transaction already has an insight, the profile
                is missing/stale, or screening rejects it,
            Suppressed when the model failed (no row is written),
            Success(insight) otherwise.
        """
        now = now or utcnow()

        if self.repo.insight_for_transaction(transaction.id) is not None:
            log_skipped(COMPONENT, "transaction already analyzed")
            return Skipped("transaction already analyzed")

        profile = self.repo.get_profile(user_id)
        if profile is None or not profile.is_current(now):
            log_skipped(COMPONENT, "no current personality profile")
            return Skipped("no current personality profile")

        if not screen_transaction(self.repo, user_id, transaction, now):
            return Skipped("transaction not screened for analysis")

        context = self.build_context(user_id, transaction, profile, now)

        try:
            text = await self.reasoner.complete(
                self.SYSTEM_PROMPT,
                self.build_prompt(context),
                temperature=TEMPERATURE,
                max_tokens=MAX_TOKENS,
            )
            analysis = TransactionAnalysis.model_validate(parse_json_response(text))
        except (ReasoningError, ValidationError) as e:
            reason = f"{type(e).__name__}: {e}"
            log_suppressed(COMPONENT, reason)
            return Suppressed(reason)

        insight = self.repo.add_insight(user_id, transaction.id, analysis, created_at=now)
        metrics.increment("insights.created")
        logger.info(
            "Spending insight created",
            user_id=user_id,
            transaction_id=transaction.id,
            pattern_type=analysis.pattern_type.value,
            requires_intervention=insight.requires_intervention,
        )
        return Success(insight)

    def build_context(
        self, user_id: int, transaction: Transaction, profile: FinancialPersonality, now: datetime
    ) -> dict:
        recent = self.repo.transactions_for_user(user_id, since=now - RECENT_WINDOW, expenses_only=True)
        similar = self.repo.similar_recent_transactions(
            user_id, transaction, since=now - RECENT_WINDOW, limit=SIMILAR_LIMIT
        )

        monthly_category_spending = 0.0
        if transaction.category:
            monthly_category_spending = total_spend(
                self.repo.transactions_for_user(
                    user_id,
                    since=now - CATEGORY_WINDOW,
                    expenses_only=True,
                    category=transaction.category,
                )
            )

        return {
            "transaction_amount": abs(transaction.amount),
            "transaction_category": transaction.category,
            "transaction_merchant": transaction.merchant,
            "transaction_time": transaction.occurred_at.isoformat(),
            "transaction_day_of_week": transaction.occurred_at.strftime("%A"),
            "transaction_hour": transaction.occurred_at.hour,
            "recent_spending": total_spend(recent),
            "similar_recent_transactions": len(similar),
            "monthly_category_spending": monthly_category_spending,
            "personality_type": getattr(profile.personality_type, "value", profile.personality_type),
            "spending_triggers": list(profile.spending_triggers or []),
            "discipline_level": profile.discipline_level,
        }

    @staticmethod
    def build_prompt(context: dict) -> str:
        triggers = ", ".join(context["spending_triggers"]) or "none known"
        return f"""Analyze this transaction for a {context['personality_type']} personality:

Transaction Details:
- Amount: ${context['transaction_amount']:.2f}
- Category: {context['transaction_category'] or 'Unknown'}
- Merchant: {context['transaction_merchant'] or 'Unknown'}
- Time: {context['transaction_time']} ({context['transaction_day_of_week']})
- Hour: {context['transaction_hour']}:00

Context:
- Recent 7-day spending: ${context['recent_spending']:.2f}
- Similar recent transactions: {context['similar_recent_transactions']}
- Monthly category spending: ${context['monthly_category_spending']:.2f}
- Known spending triggers: {triggers}
- Discipline level: {context['discipline_level']}/10

Identify any concerning patterns or triggers in this transaction."""
