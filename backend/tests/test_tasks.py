"""
Test Module: test_tasks.py
Description: End-to-end tests for the background job entry points.

Tests:
    - Zero-history users: no profile, no budgets
    - Full refresh with an unavailable reasoning model
    - Refresh failures propagate; insight failures are swallowed
    - Crisis path: insight -> coaching session -> urgent notification
    - Re-running the insight job is a no-op
    - Health check reporting

Author: Smart Financial Coach Team
"""

import pytest
from datetime import timedelta
from types import SimpleNamespace

from conftest import NOW, FakeReasoner
from database import build_session_factory
from models import (
    FinancialPersonality, BudgetRecommendation, AiCoachingSession, AiNotification,
    SpendingInsight, SessionType, NotificationType, NotificationPriority, User,
)
from services.ai_service import AIService
from services.outcomes import Success, Fallback, Skipped, Suppressed
from tasks import (
    refresh_personality_and_budget,
    analyze_transaction,
    run_personality_and_budget_refresh,
    run_transaction_insight,
    run_health_check,
)


CRISIS_INSIGHT = {
    "pattern_type": "emotional_spending",
    "emotional_context": "sad",
    "trigger_identification": ["late_night"],
    "ai_recommendation": "Wait 24 hours before similar purchases.",
    "confidence_score": 85,
    "requires_intervention": True,
}


# =============================================================================
# Personality + budget refresh
# =============================================================================

class TestRefresh:

    @pytest.mark.asyncio
    async def test_zero_transactions_is_a_no_op(self, repo, db, user):
        """Test that a user without history gets no profile and no budgets."""
        reasoner = FakeReasoner()

        results = await refresh_personality_and_budget(repo, reasoner, user.id, now=NOW)

        assert isinstance(results["personality"], Skipped)
        assert "budget" not in results
        assert db.query(FinancialPersonality).count() == 0
        assert db.query(BudgetRecommendation).count() == 0
        assert reasoner.calls == []

    @pytest.mark.asyncio
    async def test_refresh_without_model_uses_fallbacks(self, repo, db, user, add_txn):
        add_txn(2500.0, NOW - timedelta(days=10), category="Income")
        add_txn(-80.0, NOW - timedelta(days=4), category="Dining")

        results = await refresh_personality_and_budget(repo, FakeReasoner(), user.id, now=NOW)

        assert isinstance(results["personality"], Fallback)
        assert isinstance(results["budget"], Fallback)
        assert isinstance(results["daily_checkin"], Fallback)
        assert repo.get_profile(user.id).is_current(NOW)
        assert db.query(BudgetRecommendation).count() == 3
        assert db.query(AiCoachingSession).filter_by(session_type=SessionType.DAILY_CHECKIN).count() == 1

    @pytest.mark.asyncio
    async def test_current_profile_is_not_reanalyzed(self, repo, user, profile, add_txn):
        add_txn(-80.0, NOW - timedelta(days=4), category="Dining")
        reasoner = FakeReasoner()

        results = await refresh_personality_and_budget(repo, reasoner, user.id, now=NOW)

        assert isinstance(results["personality"], Skipped)
        assert len(reasoner.calls) == 2  # budget refinement + daily check-in
        assert repo.get_profile(user.id).analysis_summary == profile.analysis_summary

    @pytest.mark.asyncio
    async def test_second_refresh_same_day_skips_checkin(self, repo, db, user, profile, add_txn):
        add_txn(-80.0, NOW - timedelta(days=4), category="Dining")

        await refresh_personality_and_budget(repo, FakeReasoner(), user.id, now=NOW)
        results = await refresh_personality_and_budget(repo, FakeReasoner(), user.id, now=NOW + timedelta(hours=2))

        assert "daily_checkin" not in results
        assert db.query(AiCoachingSession).count() == 1
        assert db.query(BudgetRecommendation).count() == 3

    @pytest.mark.asyncio
    async def test_refresh_errors_propagate(self, repo, user, add_txn, monkeypatch):
        add_txn(-80.0, NOW - timedelta(days=4))

        def broken(user_id):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(repo, "get_profile", broken)

        with pytest.raises(RuntimeError):
            await refresh_personality_and_budget(repo, FakeReasoner(), user.id, now=NOW)


# =============================================================================
# Transaction insight
# =============================================================================

class TestTransactionInsight:

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, repo, user):
        outcome = await analyze_transaction(repo, FakeReasoner(), 12345, now=NOW)

        assert isinstance(outcome, Skipped)

    @pytest.mark.asyncio
    async def test_income_is_ignored(self, repo, user, profile, add_txn):
        paycheck = add_txn(2000.0, NOW - timedelta(hours=1))
        reasoner = FakeReasoner(CRISIS_INSIGHT)

        outcome = await analyze_transaction(repo, reasoner, paycheck.id, now=NOW)

        assert isinstance(outcome, Skipped)
        assert reasoner.calls == []

    @pytest.mark.asyncio
    async def test_missing_profile_is_ignored(self, repo, db, user, add_txn):
        purchase = add_txn(-300.0, NOW - timedelta(hours=1))

        outcome = await analyze_transaction(repo, FakeReasoner(CRISIS_INSIGHT), purchase.id, now=NOW)

        assert isinstance(outcome, Skipped)
        assert db.query(SpendingInsight).count() == 0

    @pytest.mark.asyncio
    async def test_unclaimed_transaction_is_claimed_and_analyzed(self, repo, user, profile, add_txn):
        purchase = add_txn(-300.0, NOW - timedelta(hours=1), category="Shopping", owner=None)
        insight = {**CRISIS_INSIGHT, "pattern_type": "social_spending"}

        outcome = await analyze_transaction(repo, FakeReasoner(insight), purchase.id, now=NOW)

        assert isinstance(outcome, Success)
        assert purchase.user_id == user.id

    @pytest.mark.asyncio
    async def test_ambiguous_owner_is_skipped(self, repo, db, user, family, profile, add_txn):
        db.add(User(family_id=family.id, email="jo@example.com", name="Jo"))
        db.commit()
        purchase = add_txn(-300.0, NOW - timedelta(hours=1), owner=None)
        reasoner = FakeReasoner(CRISIS_INSIGHT)

        outcome = await analyze_transaction(repo, reasoner, purchase.id, now=NOW)

        assert isinstance(outcome, Skipped)
        assert reasoner.calls == []

    @pytest.mark.asyncio
    async def test_intervention_starts_crisis_session(self, repo, db, user, profile, add_txn):
        purchase = add_txn(-240.0, NOW - timedelta(hours=1), category="Shopping", merchant="Gadget Hub")
        reasoner = FakeReasoner(CRISIS_INSIGHT, "Let's pause and breathe before the next purchase.")

        outcome = await analyze_transaction(repo, reasoner, purchase.id, now=NOW)

        assert isinstance(outcome, Success)
        assert outcome.value.requires_intervention is True

        session = db.query(AiCoachingSession).one()
        assert session.session_type == SessionType.CRISIS_INTERVENTION
        assert session.context_data["crisis_spending"] == 240.0
        assert session.context_data["recent_patterns"] == ["emotional_spending"]

        notification = db.query(AiNotification).one()
        assert notification.notification_type == NotificationType.CRISIS_ALERT
        assert notification.priority == NotificationPriority.URGENT
        assert notification.message == session.ai_response
        assert notification.action_data["session_id"] == session.id
        assert notification.action_data["transaction_id"] == purchase.id

    @pytest.mark.asyncio
    async def test_crisis_session_survives_model_outage(self, repo, db, user, profile, add_txn):
        purchase = add_txn(-240.0, NOW - timedelta(hours=1))

        await analyze_transaction(repo, FakeReasoner(CRISIS_INSIGHT), purchase.id, now=NOW)

        session = db.query(AiCoachingSession).one()
        assert session.response_source.value == "fallback"
        assert db.query(AiNotification).count() == 1

    @pytest.mark.asyncio
    async def test_rerun_does_not_duplicate_crisis(self, repo, db, user, profile, add_txn):
        purchase = add_txn(-240.0, NOW - timedelta(hours=1), category="Shopping")

        await analyze_transaction(repo, FakeReasoner(CRISIS_INSIGHT, "breathe"), purchase.id, now=NOW)
        outcome = await analyze_transaction(
            repo, FakeReasoner(CRISIS_INSIGHT, "breathe"), purchase.id, now=NOW + timedelta(minutes=1)
        )

        assert isinstance(outcome, Skipped)
        assert db.query(SpendingInsight).count() == 1
        assert db.query(AiCoachingSession).count() == 1
        assert db.query(AiNotification).count() == 1

    @pytest.mark.asyncio
    async def test_crisis_survives_unexpected_model_error(self, repo, db, user, profile, add_txn):
        purchase = add_txn(-240.0, NOW - timedelta(hours=1))
        reasoner = FakeReasoner(CRISIS_INSIGHT, TimeoutError("model timed out"))

        outcome = await analyze_transaction(repo, reasoner, purchase.id, now=NOW)

        assert isinstance(outcome, Success)
        session = db.query(AiCoachingSession).one()
        assert session.response_source.value == "fallback"
        assert db.query(AiNotification).one().action_data["session_id"] == session.id

    @pytest.mark.asyncio
    async def test_low_confidence_does_not_intervene(self, repo, db, user, profile, add_txn):
        purchase = add_txn(-240.0, NOW - timedelta(hours=1))
        insight = {**CRISIS_INSIGHT, "confidence_score": 69}

        await analyze_transaction(repo, FakeReasoner(insight), purchase.id, now=NOW)

        assert db.query(SpendingInsight).count() == 1
        assert db.query(AiCoachingSession).count() == 0
        assert db.query(AiNotification).count() == 0

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_swallowed(self, repo, user, profile, add_txn):
        purchase = add_txn(-240.0, NOW - timedelta(hours=1))

        outcome = await analyze_transaction(repo, FakeReasoner(RuntimeError("boom")), purchase.id, now=NOW)

        assert isinstance(outcome, Suppressed)


# =============================================================================
# Synchronous entry points
# =============================================================================

class TestEntryPoints:

    def test_refresh_entry_point(self, engine, user):
        results = run_personality_and_budget_refresh(
            user.id, session_factory=build_session_factory(engine), reasoner=FakeReasoner()
        )

        assert isinstance(results["personality"], Skipped)

    def test_insight_entry_point_never_raises(self, engine, user):
        def broken_factory():
            raise RuntimeError("no database")

        assert isinstance(run_transaction_insight(1, session_factory=broken_factory), Suppressed)

    def test_insight_entry_point(self, engine, user):
        outcome = run_transaction_insight(
            999, session_factory=build_session_factory(engine), reasoner=FakeReasoner()
        )

        assert isinstance(outcome, Skipped)


# =============================================================================
# Health
# =============================================================================

class ModelsClient:
    """Stand-in exposing only AsyncOpenAI's models.list()."""

    def __init__(self, reachable=True):
        self.reachable = reachable
        self.models = SimpleNamespace(list=self._list)

    async def _list(self):
        if not self.reachable:
            raise ConnectionError("unreachable")
        return []


class TestHealthCheck:

    def test_healthy(self, engine):
        status = run_health_check(
            session_factory=build_session_factory(engine),
            ai_service=AIService(api_key="", client=ModelsClient()),
        )

        assert status["status"] == "healthy"
        assert status["database"] == "connected"
        assert status["openai"] == "connected"
        assert status["usage"]["request_count"] == 0

    def test_unreachable_openai_is_reported(self, engine):
        status = run_health_check(
            session_factory=build_session_factory(engine),
            ai_service=AIService(api_key="", client=ModelsClient(reachable=False)),
        )

        assert status["status"] == "healthy"
        assert status["openai"] == "disconnected"

    def test_unconfigured_openai_is_disconnected(self, engine):
        status = run_health_check(
            session_factory=build_session_factory(engine), ai_service=AIService(api_key="")
        )

        assert status["openai"] == "disconnected"
