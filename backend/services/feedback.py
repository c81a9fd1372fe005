"""
Module: feedback.py
Description: User-driven state changes on coaching output.

Operations (all scoped to the acting user):
    - record_feedback        rating 1-5 and optional free text on a session
    - record_action_taken    mark a session as acted upon
    - mark_notification_read
    - acknowledge_insight
    - adopt_recommendation   make one budget the user's only active one

Missing entities come back as FeedbackResult.not_found(...) rather than an
exception, so a presentation layer can show "not found" directly.

Author: Smart Financial Coach Team
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from models import utcnow
from repository import Repository
from .observability import logger, metrics

MIN_RATING = 1
MAX_RATING = 5


class FeedbackStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    INVALID = "invalid"


@dataclass(frozen=True)
class FeedbackResult:
    status: FeedbackStatus
    value: Any = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status is FeedbackStatus.OK

    @classmethod
    def success(cls, value: Any) -> "FeedbackResult":
        return cls(FeedbackStatus.OK, value)

    @classmethod
    def not_found(cls, entity: str) -> "FeedbackResult":
        return cls(FeedbackStatus.NOT_FOUND, message=f"{entity} not found")

    @classmethod
    def invalid(cls, message: str) -> "FeedbackResult":
        return cls(FeedbackStatus.INVALID, message=message)


class FeedbackService:
    def __init__(self, repo: Repository):
        self.repo = repo

    def record_feedback(
        self, user_id: int, session_id: int, rating: int, feedback: Optional[str] = None
    ) -> FeedbackResult:
        session = self.repo.get_session(user_id, session_id)
        if session is None:
            return FeedbackResult.not_found("Session")
        if not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
            return FeedbackResult.invalid(f"Rating must be between {MIN_RATING} and {MAX_RATING}")

        session.satisfaction_rating = rating
        session.user_feedback = feedback
        self.repo.save(session)
        metrics.increment("feedback.ratings", tags={"rating": str(rating)})
        return FeedbackResult.success(session)

    def record_action_taken(self, user_id: int, session_id: int, details: str) -> FeedbackResult:
        session = self.repo.get_session(user_id, session_id)
        if session is None:
            return FeedbackResult.not_found("Session")

        session.action_taken = True
        session.action_details = details
        self.repo.save(session)
        return FeedbackResult.success(session)

    def mark_notification_read(
        self, user_id: int, notification_id: int, now: Optional[datetime] = None
    ) -> FeedbackResult:
        notification = self.repo.get_notification(user_id, notification_id)
        if notification is None:
            return FeedbackResult.not_found("Notification")

        notification.read = True
        notification.read_at = now or utcnow()
        self.repo.save(notification)
        return FeedbackResult.success(notification)

    def acknowledge_insight(
        self, user_id: int, insight_id: int, now: Optional[datetime] = None
    ) -> FeedbackResult:
        insight = self.repo.get_insight(user_id, insight_id)
        if insight is None:
            return FeedbackResult.not_found("Insight")

        insight.user_acknowledged = True
        insight.acknowledged_at = now or utcnow()
        self.repo.save(insight)
        return FeedbackResult.success(insight)

    def adopt_recommendation(
        self, user_id: int, recommendation_id: int, now: Optional[datetime] = None
    ) -> FeedbackResult:
        recommendation = self.repo.adopt_recommendation(user_id, recommendation_id, adopted_at=now)
        if recommendation is None:
            return FeedbackResult.not_found("Budget recommendation")
        logger.info(
            "Budget recommendation adopted",
            user_id=user_id,
            recommendation_id=recommendation_id,
        )
        return FeedbackResult.success(recommendation)
