"""
Module: tasks.py
Description: Background job entry points for a scheduler or queue worker.

Jobs:
    - run_personality_and_budget_refresh(user_id)
        personality inference (when the profile is missing or stale), budget
        recommendations, then the day's check-in. Failures are logged and
        re-raised so the scheduler can retry.
    - run_transaction_insight(transaction_id)
        per-transaction insight; a confident high-risk pattern starts a crisis
        coaching session and queues an urgent notification. Failures are logged
        and swallowed so transaction ingestion is never blocked.
    - run_health_check()
        database and OpenAI reachability for worker probes.

All are safe to re-invoke. Each opens its own database session and event loop.

Author: Smart Financial Coach Team
"""

import asyncio
from datetime import datetime
from typing import Optional

from sqlalchemy import text

from database import SessionLocal
from models import NotificationType, NotificationPriority, utcnow
from repository import Repository
from services.ai_service import AIService, ReasoningCapability
from services.budget_engine import BudgetRecommendationEngine
from services.financial_coach import FinancialCoach, should_generate_daily_checkin
from services.insight_analyzer import TransactionInsightAnalyzer
from services.notifier import Notifier
from services.observability import logger, metrics, log_skipped
from services.outcomes import Outcome, Success, Suppressed, Skipped, produced
from services.ownership import claim_transaction, OwnerFound
from services.personality_analyzer import PersonalityAnalyzer

CRISIS_ALERT_TITLE = "Let's take a breath together"


# =============================================================================
# Personality + budget refresh
# =============================================================================

async def refresh_personality_and_budget(
    repo: Repository,
    reasoner: ReasoningCapability,
    user_id: int,
    now: Optional[datetime] = None,
) -> dict[str, Outcome]:
    """
    Bring one user's profile, budgets and daily check-in up to date.

    Returns the outcome of each step that ran, keyed by step name.
    """
    now = now or utcnow()
    logger.set_context(user_id=user_id)
    results: dict[str, Outcome] = {}
    try:
        if not repo.has_transactions(user_id):
            log_skipped("refresh", "no transaction history")
            results["personality"] = Skipped("no transaction history")
            return results

        profile = repo.get_profile(user_id)
        if profile is None or not profile.is_current(now):
            results["personality"] = await PersonalityAnalyzer(repo, reasoner).infer(user_id, now=now)
        else:
            results["personality"] = Skipped("profile is current")

        results["budget"] = await BudgetRecommendationEngine(repo, reasoner).generate(user_id, now=now)

        if should_generate_daily_checkin(repo, user_id, now):
            results["daily_checkin"] = await FinancialCoach(repo, reasoner).daily_checkin(user_id, now=now)
        return results
    except Exception:
        repo.db.rollback()
        metrics.increment("tasks.refresh.error")
        logger.exception("Personality and budget refresh failed")
        raise
    finally:
        logger.clear_context()


# =============================================================================
# Transaction insight
# =============================================================================

async def analyze_transaction(
    repo: Repository,
    reasoner: ReasoningCapability,
    transaction_id: int,
    now: Optional[datetime] = None,
) -> Outcome:
    """Analyze one ingested transaction; never raises."""
    now = now or utcnow()
    logger.set_context(transaction_id=transaction_id)
    try:
        transaction = repo.get_transaction(transaction_id)
        if transaction is None:
            log_skipped("insight", "transaction not found")
            return Skipped("transaction not found")

        resolution = claim_transaction(repo, transaction)
        if not isinstance(resolution, OwnerFound):
            reason = f"owner not resolved: {type(resolution).__name__}"
            log_skipped("insight", reason)
            return Skipped(reason)
        user_id = resolution.user_id
        logger.set_context(user_id=user_id)

        if transaction.amount >= 0:
            return Skipped("not an expense")

        profile = repo.get_profile(user_id)
        if profile is None or not profile.is_current(now):
            log_skipped("insight", "no current personality profile")
            return Skipped("no current personality profile")

        outcome = await TransactionInsightAnalyzer(repo, reasoner).analyze(user_id, transaction, now=now)

        if isinstance(outcome, Success) and outcome.value.requires_intervention:
            await _start_crisis_intervention(repo, reasoner, user_id, transaction, outcome.value, now)
        return outcome
    except Exception as e:
        repo.db.rollback()
        metrics.increment("tasks.insight.error")
        logger.exception("Transaction insight job failed")
        return Suppressed(f"job failed: {type(e).__name__}: {e}")
    finally:
        logger.clear_context()


async def _start_crisis_intervention(repo, reasoner, user_id, transaction, insight, now) -> None:
    amount = abs(transaction.amount)
    logger.warning(
        "Intervention required",
        pattern_type=insight.pattern_type.value,
        confidence=insight.confidence_score,
    )
    outcome = await FinancialCoach(repo, reasoner).crisis_intervention(user_id, amount, now=now)
    if not produced(outcome):
        return
    session = outcome.value
    Notifier(repo).queue(
        user_id,
        NotificationType.CRISIS_ALERT,
        title=CRISIS_ALERT_TITLE,
        message=session.ai_response,
        priority=NotificationPriority.URGENT,
        action_data={
            "session_id": session.id,
            "insight_id": insight.id,
            "transaction_id": transaction.id,
        },
        now=now,
    )


# =============================================================================
# Synchronous entry points
# =============================================================================

def run_personality_and_budget_refresh(
    user_id: int, session_factory=None, reasoner: Optional[ReasoningCapability] = None
) -> dict[str, Outcome]:
    repo = Repository((session_factory or SessionLocal)())
    try:
        return asyncio.run(refresh_personality_and_budget(repo, reasoner or AIService(), user_id))
    finally:
        repo.close()


def run_transaction_insight(
    transaction_id: int, session_factory=None, reasoner: Optional[ReasoningCapability] = None
) -> Outcome:
    try:
        repo = Repository((session_factory or SessionLocal)())
    except Exception as e:
        logger.exception("Could not open database session", transaction_id=transaction_id)
        return Suppressed(f"job failed: {e}")
    try:
        return asyncio.run(analyze_transaction(repo, reasoner or AIService(), transaction_id))
    finally:
        repo.close()


# =============================================================================
# Health
# =============================================================================

async def health_check(repo: Repository, ai_service: AIService) -> dict:
    """Status of the database and the OpenAI connection for worker probes."""
    try:
        repo.db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)}"

    openai_connected = await ai_service.check_connection()

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
        "openai": "connected" if openai_connected else "disconnected",
        "usage": ai_service.get_usage_stats(),
    }


def run_health_check(session_factory=None, ai_service: Optional[AIService] = None) -> dict:
    repo = Repository((session_factory or SessionLocal)())
    try:
        return asyncio.run(health_check(repo, ai_service or AIService()))
    finally:
        repo.close()
