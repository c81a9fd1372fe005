"""
Test Module: test_insight_analyzer.py
Description: Tests for per-transaction insight analysis.

Tests:
    - Gating on profile freshness and screening
    - Suppression (no row) on model failure
    - Intervention rule recomputed from stored fields
    - Context sent to the model

Author: Smart Financial Coach Team
"""

import pytest
from datetime import timedelta

from conftest import NOW, FakeReasoner
from models import SpendingInsight, PatternType, EmotionalContext
from services.ai_service import ReasoningError
from services.insight_analyzer import TransactionInsightAnalyzer
from services.outcomes import Success, Suppressed, Skipped


def _analysis(pattern="impulse_purchase", confidence=85, **extra):
    analysis = {
        "pattern_type": pattern,
        "emotional_context": "stressed",
        "trigger_identification": ["late_night", "stress"],
        "ai_recommendation": "Sleep on purchases over $100.",
        "confidence_score": confidence,
        "requires_intervention": False,
    }
    analysis.update(extra)
    return analysis


@pytest.fixture
def purchase(add_txn):
    return add_txn(-120.0, NOW - timedelta(hours=1), category="Shopping", merchant="Gadget Hub")


class TestGating:

    @pytest.mark.asyncio
    async def test_missing_profile_skips(self, repo, user, purchase):
        reasoner = FakeReasoner(_analysis())

        outcome = await TransactionInsightAnalyzer(repo, reasoner).analyze(user.id, purchase, now=NOW)

        assert isinstance(outcome, Skipped)
        assert reasoner.calls == []

    @pytest.mark.asyncio
    async def test_stale_profile_skips(self, repo, user, profile, purchase):
        outcome = await TransactionInsightAnalyzer(repo, FakeReasoner(_analysis())).analyze(
            user.id, purchase, now=NOW + timedelta(days=7)
        )

        assert isinstance(outcome, Skipped)

    @pytest.mark.asyncio
    async def test_unscreened_transaction_skips(self, repo, db, user, profile, add_txn):
        small = add_txn(-20.0, NOW - timedelta(hours=1), category="Dining", merchant="Deli")
        reasoner = FakeReasoner(_analysis())

        outcome = await TransactionInsightAnalyzer(repo, reasoner).analyze(user.id, small, now=NOW)

        assert isinstance(outcome, Skipped)
        assert reasoner.calls == []
        assert db.query(SpendingInsight).count() == 0

    @pytest.mark.asyncio
    async def test_analyzed_transaction_is_not_analyzed_again(self, repo, db, user, profile, purchase):
        reasoner = FakeReasoner(_analysis(), _analysis(pattern="stress_spending"))
        analyzer = TransactionInsightAnalyzer(repo, reasoner)

        first = await analyzer.analyze(user.id, purchase, now=NOW)
        second = await analyzer.analyze(user.id, purchase, now=NOW + timedelta(minutes=5))

        assert isinstance(first, Success)
        assert isinstance(second, Skipped)
        assert len(reasoner.calls) == 1
        assert db.query(SpendingInsight).count() == 1


class TestSuppression:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        ReasoningError("connection reset"),
        "not json at all",
        _analysis(pattern="retail_therapy"),
        _analysis(emotional_context="melancholy"),
        _analysis(confidence=140),
    ])
    async def test_failures_create_no_insight(self, repo, db, user, profile, purchase, response):
        """Test that the analyzer stays silent rather than guessing."""
        outcome = await TransactionInsightAnalyzer(repo, FakeReasoner(response)).analyze(
            user.id, purchase, now=NOW
        )

        assert isinstance(outcome, Suppressed)
        assert db.query(SpendingInsight).count() == 0


class TestInsightCreation:

    @pytest.mark.asyncio
    async def test_insight_is_stored(self, repo, user, profile, purchase):
        outcome = await TransactionInsightAnalyzer(repo, FakeReasoner(_analysis())).analyze(
            user.id, purchase, now=NOW
        )

        assert isinstance(outcome, Success)
        insight = repo.insight_for_transaction(purchase.id)
        assert insight.pattern_type == PatternType.IMPULSE_PURCHASE
        assert insight.emotional_context == EmotionalContext.STRESSED
        assert insight.trigger_identification == ["late_night", "stress"]
        assert insight.user_acknowledged is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("confidence, expected", [(69, False), (70, True)])
    async def test_intervention_confidence_boundary(self, repo, user, profile, purchase, confidence, expected):
        outcome = await TransactionInsightAnalyzer(
            repo, FakeReasoner(_analysis(pattern="emotional_spending", confidence=confidence))
        ).analyze(user.id, purchase, now=NOW)

        assert outcome.value.requires_intervention is expected

    @pytest.mark.asyncio
    async def test_model_intervention_flag_is_not_trusted(self, repo, user, profile, purchase):
        response = _analysis(pattern="social_spending", confidence=95, requires_intervention=True)

        outcome = await TransactionInsightAnalyzer(repo, FakeReasoner(response)).analyze(
            user.id, purchase, now=NOW
        )

        assert outcome.value.requires_intervention is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("context", [None, "null", ""])
    async def test_emotional_context_may_be_empty(self, repo, user, profile, purchase, context):
        outcome = await TransactionInsightAnalyzer(
            repo, FakeReasoner(_analysis(emotional_context=context))
        ).analyze(user.id, purchase, now=NOW)

        assert isinstance(outcome, Success)
        assert outcome.value.emotional_context is None


class TestContext:

    @pytest.mark.asyncio
    async def test_prompt_carries_transaction_context(self, repo, user, profile, purchase, add_txn):
        add_txn(-30.0, NOW - timedelta(days=2), category="Shopping", merchant="Book Nook")
        add_txn(-15.0, NOW - timedelta(days=3), category="Coffee", merchant="Gadget Hub")
        add_txn(-60.0, NOW - timedelta(days=20), category="Shopping", merchant="Mall")
        add_txn(-5.0, NOW - timedelta(days=4), category="Coffee", merchant="Corner Cafe")
        reasoner = FakeReasoner(_analysis())

        await TransactionInsightAnalyzer(repo, reasoner).analyze(user.id, purchase, now=NOW)

        call = reasoner.calls[0]
        prompt = call["user_prompt"]
        assert call["temperature"] == 0.3
        assert call["max_tokens"] == 800
        assert "Amount: $120.00" in prompt
        assert "Merchant: Gadget Hub" in prompt
        assert "Hour: 11:00" in prompt
        assert "Recent 7-day spending: $170.00" in prompt
        assert "Similar recent transactions: 2" in prompt
        assert "Monthly category spending: $210.00" in prompt
        assert "Known spending triggers: late_night, stress" in prompt
        assert "Discipline level: 4/10" in prompt

    def test_similar_transactions_are_capped(self, repo, user, profile, purchase, add_txn):
        for day in range(1, 8):
            add_txn(-10.0, NOW - timedelta(days=day, hours=-1), category="Shopping", merchant="Outlet")

        context = TransactionInsightAnalyzer(repo, FakeReasoner()).build_context(
            user.id, purchase, profile, NOW
        )

        assert context["similar_recent_transactions"] == 5
