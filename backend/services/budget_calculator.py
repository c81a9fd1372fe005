"""
Rule-based baseline budgets.

Three deterministic archetypes (mandatory / desires / investment shares) are
derived from debt service and the user's personality traits. The reasoning
model may refine them later; these are also what gets stored when it cannot.

Why rules here:
    - Every user gets a usable budget even with the model unavailable
    - Each row's three shares add up to exactly 100
"""

from models import RecommendationType
from schemas import BudgetOption, CashFlowSummary, DEFAULT_BUDGET_CONFIDENCE

CONSERVATIVE_RATIONALE = "Conservative approach focusing on financial security and debt reduction."
BALANCED_RATIONALE = "Balanced approach providing security while allowing for enjoyment and growth."
AGGRESSIVE_RATIONALE = "Growth-focused approach maximizing long-term wealth building."


def conservative_budget(debt_payments: float) -> BudgetOption:
    # Security first: carrying debt pushes the mandatory share up, capped at 80
    mandatory = min(65.0 + (10.0 if debt_payments > 0 else 0.0), 80.0)
    remaining = 100.0 - mandatory
    desires = min(15.0, remaining * 0.3)
    investment = remaining - desires
    return BudgetOption(
        mandatory_allocation=mandatory,
        desires_allocation=desires,
        investment_allocation=investment,
        rationale=CONSERVATIVE_RATIONALE,
        confidence_score=DEFAULT_BUDGET_CONFIDENCE,
    )


def balanced_budget(risk_tolerance: int) -> BudgetOption:
    mandatory, desires, investment = 55.0, 25.0, 20.0
    if risk_tolerance > 6:
        desires -= 5.0
        investment += 5.0
    return BudgetOption(
        mandatory_allocation=mandatory,
        desires_allocation=desires,
        investment_allocation=investment,
        rationale=BALANCED_RATIONALE,
        confidence_score=DEFAULT_BUDGET_CONFIDENCE,
    )


def aggressive_budget(discipline_level: int) -> BudgetOption:
    mandatory, desires, investment = 45.0, 20.0, 35.0
    if discipline_level < 6:
        # Less aggressive for low-discipline users
        mandatory += 10.0
        investment -= 10.0
    return BudgetOption(
        mandatory_allocation=mandatory,
        desires_allocation=desires,
        investment_allocation=investment,
        rationale=AGGRESSIVE_RATIONALE,
        confidence_score=DEFAULT_BUDGET_CONFIDENCE,
    )


def baseline_budgets(cash_flow: CashFlowSummary, profile) -> dict[RecommendationType, BudgetOption]:
    """The three candidate allocations for a cash flow summary and personality profile."""
    return {
        RecommendationType.CONSERVATIVE: conservative_budget(cash_flow.debt_payments),
        RecommendationType.BALANCED: balanced_budget(profile.risk_tolerance),
        RecommendationType.AGGRESSIVE: aggressive_budget(profile.discipline_level),
    }
