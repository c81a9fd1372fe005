"""
Module: personality_analyzer.py
Description: Infers a user's financial personality from six months of spending.

Pipeline:
    1. Summarize the last 180 days of transactions (feature_extractor)
    2. Ask the reasoning model for a strict-JSON personality profile
    3. Validate it against PersonalityAnalysis
    4. Upsert the single profile row, stamping last_analyzed_at

A failed or invalid model response is replaced by PersonalityAnalysis.default()
and that default IS persisted, so "analysis unavailable" stays distinguishable
from "never analyzed" (no row at all).

Author: Smart Financial Coach Team

Usage:
    analyzer = PersonalityAnalyzer(repo, AIService())
    outcome = await analyzer.infer(user_id)
"""

from datetime import datetime, timedelta
from typing import Optional

from pydantic import ValidationError

from models import PersonalityType, utcnow
from repository import Repository
from schemas import FinancialSummary, PersonalityAnalysis
from .ai_service import ReasoningCapability, ReasoningError, parse_json_response
from .feature_extractor import summarize
from .observability import logger, metrics, timed, timed_block, log_fallback, log_skipped
from .outcomes import Outcome, Success, Fallback, Skipped

LOOKBACK = timedelta(days=180)
TEMPERATURE = 0.3
MAX_TOKENS = 1500

COMPONENT = "personality"


class PersonalityAnalyzer:
    """Builds and stores the FinancialPersonality for one user at a time."""

    SYSTEM_PROMPT = f"""You are an expert financial psychologist analyzing spending patterns to determine personality types and provide insights.

Analyze the user's transaction data and respond with ONLY a JSON object (no prose, no code fences) containing:
{{
  "personality_type": "one of: {', '.join(p.value for p in PersonalityType)}",
  "risk_tolerance": integer 1-10,
  "discipline_level": integer 1-10,
  "spending_triggers": ["array", "of", "triggers"],
  "financial_traumas": ["array", "of", "trauma", "indicators"],
  "lifestyle_preferences": {{"preference_name": "description"}},
  "confidence_score": number 0-100,
  "analysis_summary": "Brief explanation of the analysis"
}}

Focus on:
- Spending consistency vs. volatility
- Emotional spending patterns
- Risk-taking behavior
- Planning vs. impulsive behavior
- Response to financial stress
- Social spending influences"""

    def __init__(self, repo: Repository, reasoner: ReasoningCapability):
        self.repo = repo
        self.reasoner = reasoner

    @timed("personality.infer")
    async def infer(self, user_id: int, now: Optional[datetime] = None) -> Outcome:
        """
        Analyze the user and upsert their profile.

        Returns:
            Skipped when the user has no transactions (nothing is written),
            Success(profile) for a validated model analysis,
            Fallback(profile, reason) when the default profile was stored.
        """
        now = now or utcnow()

        if not self.repo.has_transactions(user_id):
            log_skipped(COMPONENT, "no transaction history")
            return Skipped("no transaction history")

        with timed_block("features.summarize"):
            summary = summarize(self.repo.transactions_for_user(user_id, since=now - LOOKBACK))
        logger.info(
            "Analyzing financial personality",
            user_id=user_id,
            transactions=summary.transaction_count,
        )

        fallback_reason = None
        try:
            text = await self.reasoner.complete(
                self.SYSTEM_PROMPT,
                self.build_prompt(summary),
                temperature=TEMPERATURE,
                max_tokens=MAX_TOKENS,
            )
            analysis = PersonalityAnalysis.model_validate(parse_json_response(text))
        except (ReasoningError, ValidationError) as e:
            fallback_reason = f"{type(e).__name__}: {e}"
            log_fallback(COMPONENT, fallback_reason)
            analysis = PersonalityAnalysis.default()

        profile = self.repo.upsert_profile(user_id, analysis, analyzed_at=now)
        metrics.increment("personality.profiles")

        if fallback_reason is not None:
            return Fallback(profile, fallback_reason)
        logger.info(
            "Personality profile updated",
            user_id=user_id,
            personality_type=analysis.personality_type.value,
            confidence=analysis.confidence_score,
        )
        return Success(profile)

    @staticmethod
    def build_prompt(summary: FinancialSummary) -> str:
        categories = "\n".join(
            f"{name}: ${amount:.2f}" for name, amount in summary.categories.items()
        ) or "No expenses"
        weekdays = ", ".join(f"{day}: ${amount:.2f}" for day, amount in summary.weekday_spend.items())
        months = ", ".join(f"{month}: ${amount:.2f}" for month, amount in summary.monthly_spend.items())
        merchants = "\n".join(
            f"{name}: {stats.count} transactions, ${stats.total:.2f}"
            for name, stats in summary.merchants.items()
        ) or "No merchant data"
        amounts = summary.amounts

        return f"""Analyze this user's financial behavior:

Transaction Summary:
- Total transactions: {summary.transaction_count}
- Total spending: ${summary.total_spend:.2f}
- Total income: ${summary.total_income:.2f}

Category Breakdown:
{categories}

Timing Patterns:
weekday_spending: {weekdays or 'none'}
monthly_patterns: {months or 'none'}

Amount Patterns:
average_transaction: {amounts.mean}
median_transaction: {amounts.median}
large_purchases: {amounts.outlier_count}
small_frequent: {amounts.small_frequent_count}

Merchant Patterns:
{merchants}

Please provide a comprehensive financial personality analysis."""
