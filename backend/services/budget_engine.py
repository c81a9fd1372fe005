"""
Module: budget_engine.py
Description: Generates the three personalized budget recommendations.

Pipeline:
    1. Cash flow summary over the last 90 days (income, expenses, savings
       rate, last-30-day debt service)
    2. Rule-based baseline for each archetype (budget_calculator)
    3. Reasoning model refines the three options
    4. Validated refinement, or the baseline when refinement fails, replaces
       the user's previous batch in one transaction

None of the generated rows is active; adoption is a separate user action.

Author: Smart Financial Coach Team
"""

from datetime import datetime, timedelta
from typing import Optional

from pydantic import ValidationError

from models import FinancialPersonality, RecommendationType, utcnow
from repository import Repository
from schemas import BudgetOption, BudgetRefinement, CashFlowSummary
from .ai_service import ReasoningCapability, ReasoningError, parse_json_response
from .budget_calculator import baseline_budgets
from .feature_extractor import cash_flow
from .observability import logger, timed, timed_block, log_fallback, log_skipped
from .outcomes import Outcome, Success, Fallback, Skipped

LOOKBACK = timedelta(days=90)
LOOKBACK_MONTHS = 3
TEMPERATURE = 0.2
MAX_TOKENS = 2000

COMPONENT = "budget"


class BudgetRecommendationEngine:
    """Produces conservative / balanced / aggressive budgets for a profiled user."""

    SYSTEM_PROMPT = """You are an expert financial advisor providing personalized budget recommendations.

Refine the budget recommendations based on the user's personality, spending patterns, and financial situation.

Respond with ONLY a JSON object (no prose, no code fences) containing three budget options:
{
  "conservative": {
    "mandatory_allocation": 65,
    "desires_allocation": 15,
    "investment_allocation": 20,
    "rationale": "explanation",
    "category_breakdown": {"housing": 30, "food": 15, "transportation": 10, "utilities": 5, "debt": 5},
    "confidence_score": 85
  },
  "balanced": { ... },
  "aggressive": { ... }
}

Each option's three allocations must sum to 100. Consider:
- User's personality type and risk tolerance
- Current spending patterns
- Discipline level for realistic targets
- Life stage and financial goals"""

    def __init__(self, repo: Repository, reasoner: ReasoningCapability):
        self.repo = repo
        self.reasoner = reasoner

    @timed("budget.generate")
    async def generate(self, user_id: int, now: Optional[datetime] = None) -> Outcome:
        """
        Replace the user's recommendations with a fresh batch of three.

        Returns Skipped without touching storage when the user has no current
        personality profile.
        """
        now = now or utcnow()

        profile = self.repo.get_profile(user_id)
        if profile is None or not profile.is_current(now):
            log_skipped(COMPONENT, "no current personality profile")
            return Skipped("no current personality profile")

        with timed_block("features.cash_flow"):
            summary = cash_flow(
                self.repo.transactions_for_user(user_id, since=now - LOOKBACK),
                now=now,
                debt_account_ids=self.repo.debt_account_ids(user_id),
                months=LOOKBACK_MONTHS,
            )
        baseline = baseline_budgets(summary, profile)

        fallback_reason = None
        try:
            text = await self.reasoner.complete(
                self.SYSTEM_PROMPT,
                self.build_prompt(summary, profile, baseline),
                temperature=TEMPERATURE,
                max_tokens=MAX_TOKENS,
            )
            options = BudgetRefinement.model_validate(parse_json_response(text)).options()
        except (ReasoningError, ValidationError) as e:
            fallback_reason = f"{type(e).__name__}: {e}"
            log_fallback(COMPONENT, fallback_reason)
            options = baseline

        recommendations = self.repo.replace_recommendations(user_id, options)
        logger.info(
            "Budget recommendations generated",
            user_id=user_id,
            count=len(recommendations),
            refined=fallback_reason is None,
        )

        if fallback_reason is not None:
            return Fallback(recommendations, fallback_reason)
        return Success(recommendations)

    @staticmethod
    def build_prompt(
        summary: CashFlowSummary,
        profile: FinancialPersonality,
        baseline: dict[RecommendationType, BudgetOption],
    ) -> str:
        categories = "\n".join(
            f"{name}: ${amount:.2f}" for name, amount in summary.expense_categories.items()
        ) or "No expenses recorded"
        initial = "\n".join(
            f"{rec_type.value.capitalize()}: {option.mandatory_allocation:g}% mandatory, "
            f"{option.desires_allocation:g}% desires, {option.investment_allocation:g}% investments"
            for rec_type, option in baseline.items()
        )
        personality_type = getattr(profile.personality_type, "value", profile.personality_type)

        return f"""User Profile:
- Personality: {personality_type}
- Risk Tolerance: {profile.risk_tolerance}/10
- Discipline Level: {profile.discipline_level}/10
- Monthly Income: ${summary.monthly_income:.2f}
- Monthly Expenses: ${summary.monthly_expenses:.2f}
- Current Savings Rate: {summary.savings_rate}%
- Monthly Debt Payments: ${summary.debt_payments:.2f}

Current Expense Categories:
{categories}

Initial Budget Recommendations:
{initial}

Please refine these recommendations to be more personalized and realistic for this user."""
