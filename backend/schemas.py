"""Pydantic schemas: computed summaries and validated reasoning-model output."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from models import PersonalityType, PatternType, EmotionalContext, RecommendationType

# Accepted band around 100 for a budget's three allocations (rounding slack)
ALLOCATION_TOLERANCE = 1.0
DEFAULT_BUDGET_CONFIDENCE = 75.0


def _unique_strings(value) -> list[str]:
    """Normalize a model-supplied list into distinct, non-empty strings (order kept)."""
    if value is None:
        return []
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise ValueError("expected a list of strings")
    seen = []
    for item in value:
        text = str(item).strip()
        if text and text not in seen:
            seen.append(text)
    return seen


# =============================================================================
# Feature summaries
# =============================================================================

class AmountStats(BaseModel):
    mean: float = 0.0
    median: float = 0.0
    outlier_count: int = 0
    small_frequent_count: int = 0


class MerchantStats(BaseModel):
    count: int
    total: float


class FinancialSummary(BaseModel):
    """Aggregate view of a transaction window. Recomputed on demand, never stored."""
    transaction_count: int = 0
    total_spend: float = 0.0
    total_income: float = 0.0
    categories: dict[str, float] = Field(default_factory=dict)
    weekday_spend: dict[str, float] = Field(default_factory=dict)
    monthly_spend: dict[str, float] = Field(default_factory=dict)
    amounts: AmountStats = Field(default_factory=AmountStats)
    merchants: dict[str, MerchantStats] = Field(default_factory=dict)


class CashFlowSummary(BaseModel):
    """Monthly averages used to size budget recommendations."""
    monthly_income: float = 0.0
    monthly_expenses: float = 0.0
    expense_categories: dict[str, float] = Field(default_factory=dict)
    savings_rate: float = 0.0
    debt_payments: float = 0.0


# =============================================================================
# Reasoning model output
# =============================================================================

class PersonalityAnalysis(BaseModel):
    personality_type: PersonalityType
    risk_tolerance: int = Field(ge=1, le=10)
    discipline_level: int = Field(ge=1, le=10)
    spending_triggers: list[str] = Field(default_factory=list)
    financial_traumas: list[str] = Field(default_factory=list)
    lifestyle_preferences: dict[str, str] = Field(default_factory=dict)
    confidence_score: float = Field(ge=0, le=100)
    analysis_summary: str = ""

    @field_validator("spending_triggers", "financial_traumas", mode="before")
    @classmethod
    def _distinct(cls, value):
        return _unique_strings(value)

    @field_validator("lifestyle_preferences", mode="before")
    @classmethod
    def _string_map(cls, value):
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValueError("expected an object of preferences")
        return {str(k): v if isinstance(v, str) else str(v) for k, v in value.items()}

    @classmethod
    def default(cls) -> "PersonalityAnalysis":
        """Honest placeholder persisted when the model cannot be used."""
        return cls(
            personality_type=PersonalityType.BALANCED_PLANNER,
            risk_tolerance=5,
            discipline_level=5,
            confidence_score=50,
            analysis_summary="Default analysis - AI analysis unavailable",
        )


class BudgetOption(BaseModel):
    mandatory_allocation: float = Field(ge=0, le=100)
    desires_allocation: float = Field(ge=0, le=100)
    investment_allocation: float = Field(ge=0, le=100)
    rationale: str = ""
    category_breakdown: dict[str, float] = Field(default_factory=dict)
    confidence_score: float = Field(default=DEFAULT_BUDGET_CONFIDENCE, ge=0, le=100)

    @field_validator("category_breakdown", mode="before")
    @classmethod
    def _empty_breakdown(cls, value):
        return {} if value is None else value

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _default_confidence(cls, value):
        return DEFAULT_BUDGET_CONFIDENCE if value is None else value

    @model_validator(mode="after")
    def _allocations_sum_to_100(self):
        total = self.total_allocation
        if not (100 - ALLOCATION_TOLERANCE <= total <= 100 + ALLOCATION_TOLERANCE):
            raise ValueError(f"Budget allocations must sum to 100% (currently {total}%)")
        return self

    @property
    def total_allocation(self) -> float:
        return self.mandatory_allocation + self.desires_allocation + self.investment_allocation


class BudgetRefinement(BaseModel):
    conservative: BudgetOption
    balanced: BudgetOption
    aggressive: BudgetOption

    def options(self) -> dict[RecommendationType, BudgetOption]:
        return {
            RecommendationType.CONSERVATIVE: self.conservative,
            RecommendationType.BALANCED: self.balanced,
            RecommendationType.AGGRESSIVE: self.aggressive,
        }


class TransactionAnalysis(BaseModel):
    pattern_type: PatternType
    emotional_context: Optional[EmotionalContext] = None
    trigger_identification: list[str] = Field(default_factory=list)
    ai_recommendation: str = ""
    confidence_score: float = Field(ge=0, le=100)
    # Advisory only; intervention is recomputed from pattern and confidence
    requires_intervention: bool = False

    @field_validator("emotional_context", mode="before")
    @classmethod
    def _blank_context(cls, value):
        if isinstance(value, str) and value.strip().lower() in ("", "null", "none"):
            return None
        return value

    @field_validator("trigger_identification", mode="before")
    @classmethod
    def _distinct(cls, value):
        return _unique_strings(value)
