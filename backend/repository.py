"""
Module: repository.py
Description: User-scoped persistence access for the coaching pipeline.

All reads and writes of pipeline entities go through Repository so services
never build queries themselves. Two operations are transactional units:

    - replace_recommendations: delete every recommendation for the user and
      insert the new batch in one commit.
    - adopt_recommendation: deactivate every recommendation for the user,
      then activate the chosen one in the same commit.

Author: Smart Financial Coach Team

Usage:
    repo = Repository(SessionLocal())
    profile = repo.get_profile(user_id)
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session as DBSession

from models import (
    User, Account, AccountType, Transaction, Goal,
    FinancialPersonality, BudgetRecommendation, RecommendationType,
    SpendingInsight, SpendingHabit, AiCoachingSession, SessionType,
    AiNotification, utcnow,
)
from schemas import PersonalityAnalysis, BudgetOption, TransactionAnalysis

DEBT_ACCOUNT_TYPES = (AccountType.CREDIT_CARD, AccountType.LOAN)


class Repository:
    """Wraps one SQLAlchemy session; every query is scoped to a single user."""

    def __init__(self, db: DBSession):
        self.db = db

    def close(self) -> None:
        self.db.close()

    # =========================================================================
    # Users, accounts, transactions
    # =========================================================================

    def get_user(self, user_id: int) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_account(self, account_id: int) -> Optional[Account]:
        return self.db.get(Account, account_id)

    def family_user_ids(self, family_id: int) -> list[int]:
        rows = (
            self.db.query(User.id)
            .filter(User.family_id == family_id)
            .order_by(User.id)
            .all()
        )
        return [row.id for row in rows]

    def add_transaction(self, transaction: Transaction) -> Transaction:
        self.db.add(transaction)
        self.db.commit()
        return transaction

    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        return self.db.get(Transaction, transaction_id)

    def assign_transaction_owner(self, transaction: Transaction, user_id: int) -> None:
        transaction.user_id = user_id
        self.db.commit()

    def has_transactions(self, user_id: int) -> bool:
        return (
            self.db.query(Transaction.id)
            .filter(Transaction.user_id == user_id)
            .first()
        ) is not None

    def transactions_for_user(
        self,
        user_id: int,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        expenses_only: bool = False,
        category: Optional[str] = None,
    ) -> list[Transaction]:
        """User's transactions in chronological order, optionally windowed."""
        query = self.db.query(Transaction).filter(Transaction.user_id == user_id)
        if since is not None:
            query = query.filter(Transaction.occurred_at >= since)
        if until is not None:
            query = query.filter(Transaction.occurred_at <= until)
        if expenses_only:
            query = query.filter(Transaction.amount < 0)
        if category is not None:
            query = query.filter(Transaction.category == category)
        return query.order_by(Transaction.occurred_at, Transaction.id).all()

    def count_merchant_transactions(self, user_id: int, merchant: str, since: datetime) -> int:
        return (
            self.db.query(Transaction)
            .filter(
                Transaction.user_id == user_id,
                Transaction.merchant == merchant,
                Transaction.occurred_at >= since,
            )
            .count()
        )

    def similar_recent_transactions(
        self, user_id: int, transaction: Transaction, since: datetime, limit: int = 5
    ) -> list[Transaction]:
        """Recent expenses sharing the category or merchant, excluding the transaction itself."""
        matchers = []
        if transaction.category:
            matchers.append(Transaction.category == transaction.category)
        if transaction.merchant:
            matchers.append(Transaction.merchant == transaction.merchant)
        if not matchers:
            return []
        return (
            self.db.query(Transaction)
            .filter(
                Transaction.user_id == user_id,
                Transaction.occurred_at >= since,
                Transaction.amount < 0,
                Transaction.id != transaction.id,
                or_(*matchers),
            )
            .order_by(Transaction.occurred_at.desc())
            .limit(limit)
            .all()
        )

    def debt_account_ids(self, user_id: int) -> set[int]:
        user = self.get_user(user_id)
        if user is None or user.family_id is None:
            return set()
        rows = (
            self.db.query(Account.id)
            .filter(
                Account.family_id == user.family_id,
                Account.account_type.in_(DEBT_ACCOUNT_TYPES),
            )
            .all()
        )
        return {row.id for row in rows}

    def active_goals(self, user_id: int, limit: Optional[int] = None) -> list[Goal]:
        query = (
            self.db.query(Goal)
            .filter(Goal.user_id == user_id, Goal.is_active.is_(True))
            .order_by(Goal.created_at, Goal.id)
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    # =========================================================================
    # Personality profiles
    # =========================================================================

    def get_profile(self, user_id: int) -> Optional[FinancialPersonality]:
        return (
            self.db.query(FinancialPersonality)
            .filter(FinancialPersonality.user_id == user_id)
            .first()
        )

    def upsert_profile(
        self, user_id: int, analysis: PersonalityAnalysis, analyzed_at: datetime
    ) -> FinancialPersonality:
        """Overwrite the user's single profile row, creating it on first analysis."""
        profile = self.get_profile(user_id)
        if profile is None:
            profile = FinancialPersonality(user_id=user_id)
            self.db.add(profile)

        profile.personality_type = analysis.personality_type
        profile.risk_tolerance = analysis.risk_tolerance
        profile.discipline_level = analysis.discipline_level
        profile.spending_triggers = list(analysis.spending_triggers)
        profile.financial_traumas = list(analysis.financial_traumas)
        profile.lifestyle_preferences = dict(analysis.lifestyle_preferences)
        profile.confidence_score = analysis.confidence_score
        profile.analysis_summary = analysis.analysis_summary
        profile.last_analyzed_at = analyzed_at
        self.db.commit()
        return profile

    # =========================================================================
    # Budget recommendations
    # =========================================================================

    def recommendations_for_user(self, user_id: int) -> list[BudgetRecommendation]:
        return (
            self.db.query(BudgetRecommendation)
            .filter(BudgetRecommendation.user_id == user_id)
            .order_by(BudgetRecommendation.id)
            .all()
        )

    def active_recommendation(self, user_id: int) -> Optional[BudgetRecommendation]:
        return (
            self.db.query(BudgetRecommendation)
            .filter(
                BudgetRecommendation.user_id == user_id,
                BudgetRecommendation.is_active.is_(True),
            )
            .first()
        )

    def count_active_recommendations(self, user_id: int) -> int:
        return (
            self.db.query(BudgetRecommendation)
            .filter(
                BudgetRecommendation.user_id == user_id,
                BudgetRecommendation.is_active.is_(True),
            )
            .count()
        )

    def replace_recommendations(
        self, user_id: int, options: dict[RecommendationType, BudgetOption]
    ) -> list[BudgetRecommendation]:
        """Swap the user's recommendation batch atomically; none of the new rows is active."""
        try:
            (
                self.db.query(BudgetRecommendation)
                .filter(BudgetRecommendation.user_id == user_id)
                .delete(synchronize_session="fetch")
            )
            created = []
            for rec_type, option in options.items():
                recommendation = BudgetRecommendation(
                    user_id=user_id,
                    recommendation_type=rec_type,
                    mandatory_allocation=option.mandatory_allocation,
                    desires_allocation=option.desires_allocation,
                    investment_allocation=option.investment_allocation,
                    confidence_score=option.confidence_score,
                    rationale=option.rationale,
                    category_breakdown=dict(option.category_breakdown),
                    is_active=False,
                )
                self.db.add(recommendation)
                created.append(recommendation)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return created

    def adopt_recommendation(
        self, user_id: int, recommendation_id: int, adopted_at: Optional[datetime] = None
    ) -> Optional[BudgetRecommendation]:
        """
        Make one recommendation the user's only active one.

        The deactivating UPDATE runs first so the write lock is held before the
        target is looked up; a target deleted by a concurrent replacement is
        reported as missing and nothing changes.
        """
        try:
            (
                self.db.query(BudgetRecommendation)
                .filter(BudgetRecommendation.user_id == user_id)
                .update({BudgetRecommendation.is_active: False}, synchronize_session="fetch")
            )
            activated = (
                self.db.query(BudgetRecommendation)
                .filter(
                    BudgetRecommendation.id == recommendation_id,
                    BudgetRecommendation.user_id == user_id,
                )
                .update(
                    {
                        BudgetRecommendation.is_active: True,
                        BudgetRecommendation.adopted_at: adopted_at or utcnow(),
                    },
                    synchronize_session="fetch",
                )
            )
            if activated != 1:
                self.db.rollback()
                return None
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        recommendation = self.db.get(BudgetRecommendation, recommendation_id)
        if recommendation is not None:
            self.db.refresh(recommendation)
        return recommendation

    # =========================================================================
    # Spending insights
    # =========================================================================

    def add_insight(
        self,
        user_id: int,
        transaction_id: Optional[int],
        analysis: TransactionAnalysis,
        created_at: Optional[datetime] = None,
    ) -> SpendingInsight:
        insight = SpendingInsight(
            user_id=user_id,
            transaction_id=transaction_id,
            pattern_type=analysis.pattern_type,
            emotional_context=analysis.emotional_context,
            trigger_identification=list(analysis.trigger_identification),
            ai_recommendation=analysis.ai_recommendation,
            confidence_score=analysis.confidence_score,
            created_at=created_at or utcnow(),
        )
        self.db.add(insight)
        self.db.commit()
        return insight

    def get_insight(self, user_id: int, insight_id: int) -> Optional[SpendingInsight]:
        return (
            self.db.query(SpendingInsight)
            .filter(SpendingInsight.id == insight_id, SpendingInsight.user_id == user_id)
            .first()
        )

    def insight_for_transaction(self, transaction_id: int) -> Optional[SpendingInsight]:
        return (
            self.db.query(SpendingInsight)
            .filter(SpendingInsight.transaction_id == transaction_id)
            .first()
        )

    def recent_insights(self, user_id: int, since: datetime, limit: int = 5) -> list[SpendingInsight]:
        return (
            self.db.query(SpendingInsight)
            .filter(SpendingInsight.user_id == user_id, SpendingInsight.created_at >= since)
            .order_by(SpendingInsight.created_at.desc(), SpendingInsight.id.desc())
            .limit(limit)
            .all()
        )

    def unacknowledged_insights(self, user_id: int, limit: int = 3) -> list[SpendingInsight]:
        return (
            self.db.query(SpendingInsight)
            .filter(
                SpendingInsight.user_id == user_id,
                SpendingInsight.user_acknowledged.is_(False),
            )
            .order_by(SpendingInsight.created_at.desc())
            .limit(limit)
            .all()
        )

    # =========================================================================
    # Habits, coaching sessions, notifications
    # =========================================================================

    def get_habit(self, user_id: int, habit_id: int) -> Optional[SpendingHabit]:
        return (
            self.db.query(SpendingHabit)
            .filter(SpendingHabit.id == habit_id, SpendingHabit.user_id == user_id)
            .first()
        )

    def add_session(self, session: AiCoachingSession) -> AiCoachingSession:
        self.db.add(session)
        self.db.commit()
        return session

    def get_session(self, user_id: int, session_id: int) -> Optional[AiCoachingSession]:
        return (
            self.db.query(AiCoachingSession)
            .filter(AiCoachingSession.id == session_id, AiCoachingSession.user_id == user_id)
            .first()
        )

    def latest_session_since(
        self, user_id: int, session_type: SessionType, since: datetime
    ) -> Optional[AiCoachingSession]:
        return (
            self.db.query(AiCoachingSession)
            .filter(
                AiCoachingSession.user_id == user_id,
                AiCoachingSession.session_type == session_type,
                AiCoachingSession.created_at >= since,
            )
            .order_by(AiCoachingSession.created_at.desc())
            .first()
        )

    def add_notification(self, notification: AiNotification) -> AiNotification:
        self.db.add(notification)
        self.db.commit()
        return notification

    def get_notification(self, user_id: int, notification_id: int) -> Optional[AiNotification]:
        return (
            self.db.query(AiNotification)
            .filter(AiNotification.id == notification_id, AiNotification.user_id == user_id)
            .first()
        )

    def ready_notifications(self, user_id: int, now: datetime) -> list[AiNotification]:
        return (
            self.db.query(AiNotification)
            .filter(
                AiNotification.user_id == user_id,
                AiNotification.read.is_(False),
                or_(AiNotification.scheduled_for.is_(None), AiNotification.scheduled_for <= now),
            )
            .order_by(AiNotification.created_at, AiNotification.id)
            .all()
        )

    def save(self, *entities) -> None:
        """Commit mutations made to already-loaded entities."""
        for entity in entities:
            self.db.add(entity)
        self.db.commit()
