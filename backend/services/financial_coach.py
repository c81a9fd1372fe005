"""
Module: financial_coach.py
Description: Coaching orchestrator producing one persisted session per request.

Session flow:
    1. Build a deterministic context record for the session type
    2. Ask the reasoning model for a short supportive reply
    3. On any failure, substitute the canned reply for that session type
    4. Persist the session (context + final text + response source)

Implemented session types: daily_checkin, crisis_intervention, goal_review,
purchase_guidance. The other SessionType members raise UnsupportedSessionType.

Context fields whose calculation does not exist yet carry NOT_AVAILABLE.

Author: Smart Financial Coach Team

Usage:
    coach = FinancialCoach(repo, AIService())
    if should_generate_daily_checkin(repo, user_id):
        outcome = await coach.daily_checkin(user_id)
"""

from datetime import datetime, timedelta, date
from typing import Optional

from models import AiCoachingSession, BudgetRecommendation, SessionType, ResponseSource, utcnow
from repository import Repository
from .ai_service import ReasoningCapability, ReasoningError
from .feature_extractor import total_spend, total_income, daily_spend
from .observability import logger, metrics, timed, log_fallback
from .outcomes import Outcome, Success, Fallback

# Marker for context values with no implementation yet (budget impact,
# goal progress, time to goals, similar purchases)
NOT_AVAILABLE = "not available"

TEMPERATURE = 0.7
MAX_TOKENS = 800

MONTH_WINDOW = timedelta(days=30)
STREAK_WINDOW_DAYS = 30
GOOD_DAY_MULTIPLIER = 1.2
CRISIS_INSIGHT_WINDOW = timedelta(days=7)
RECENT_INSIGHT_LIMIT = 5
OPEN_INSIGHT_LIMIT = 3
DAILY_GOAL_LIMIT = 3

COMPONENT = "coach"


class UnsupportedSessionType(Exception):
    """The session type exists but has no context builder yet."""

    def __init__(self, session_type: SessionType):
        self.session_type = session_type
        super().__init__(f"Session type '{session_type.value}' is not implemented")


# =============================================================================
# Prompts and canned replies
# =============================================================================

BASE_SYSTEM_PROMPT = """You are a supportive, empathetic financial coach helping users build better money habits.

Your personality:
- Encouraging and non-judgmental
- Practical and actionable
- Understanding of human psychology
- Focused on small, sustainable changes
- Celebrates progress, no matter how small

Guidelines:
- Keep responses concise (2-3 sentences max for daily checkins)
- Use encouraging, friendly language
- Provide specific, actionable advice
- Reference their personality type when relevant
- Acknowledge emotions and stress around money
- Focus on progress, not perfection"""

SESSION_GUIDANCE = {
    SessionType.DAILY_CHECKIN: "For daily check-ins: Provide a brief, encouraging message with one small actionable tip.",
    SessionType.CRISIS_INTERVENTION: "For crisis intervention: Be extra supportive, help them pause and reflect, offer immediate coping strategies.",
    SessionType.GOAL_REVIEW: "For goal reviews: Celebrate progress, adjust expectations if needed, provide motivation to continue.",
    SessionType.PURCHASE_GUIDANCE: "For purchase guidance: Help them pause and consider if this aligns with their values and budget.",
}

FALLBACK_RESPONSES = {
    SessionType.DAILY_CHECKIN: (
        "Great job checking in today! Remember, small consistent actions lead to big financial wins. "
        "What's one thing you can do today to move closer to your goals?"
    ),
    SessionType.CRISIS_INTERVENTION: (
        "I understand this feels overwhelming right now. Take a deep breath. Every financial setback is "
        "temporary and a chance to learn. What's one small step you can take right now to feel more in control?"
    ),
    SessionType.GOAL_REVIEW: (
        "Progress isn't always linear, and that's okay! Every step forward, no matter how small, "
        "is worth celebrating. What's working well for you right now?"
    ),
}
GENERIC_FALLBACK = "You're doing great by staying engaged with your finances. Keep up the good work!"


def system_prompt(session_type: SessionType) -> str:
    guidance = SESSION_GUIDANCE.get(session_type)
    return f"{BASE_SYSTEM_PROMPT}\n\n{guidance}" if guidance else BASE_SYSTEM_PROMPT


def fallback_response(session_type: SessionType) -> str:
    return FALLBACK_RESPONSES.get(session_type, GENERIC_FALLBACK)


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _start_of_month(moment: datetime) -> datetime:
    return _start_of_day(moment).replace(day=1)


def should_generate_daily_checkin(repo: Repository, user_id: int, now: Optional[datetime] = None) -> bool:
    """True when the user has no daily check-in created since the start of today."""
    now = now or utcnow()
    return repo.latest_session_since(user_id, SessionType.DAILY_CHECKIN, _start_of_day(now)) is None


# =============================================================================
# Coach
# =============================================================================

class FinancialCoach:
    """
    Builds context, asks for coaching text and records the session.

    The coach is stateless between calls; the once-per-day rule for check-ins
    is the caller's job (see should_generate_daily_checkin).
    """

    def __init__(self, repo: Repository, reasoner: ReasoningCapability):
        self.repo = repo
        self.reasoner = reasoner

    async def run(self, session_type: SessionType, user_id: int, **params) -> Outcome:
        """Dispatch to the session builder for `session_type`."""
        session_type = SessionType(session_type)
        if session_type is SessionType.DAILY_CHECKIN:
            return await self.daily_checkin(user_id, **params)
        if session_type is SessionType.CRISIS_INTERVENTION:
            return await self.crisis_intervention(user_id, **params)
        if session_type is SessionType.GOAL_REVIEW:
            return await self.goal_review(user_id, **params)
        if session_type is SessionType.PURCHASE_GUIDANCE:
            return await self.purchase_guidance(user_id, **params)
        if session_type in (
            SessionType.HABIT_COACHING,
            SessionType.MOTIVATION_BOOST,
            SessionType.EDUCATIONAL_CONTENT,
            SessionType.CELEBRATION,
        ):
            raise UnsupportedSessionType(session_type)
        raise ValueError(f"Unknown session type: {session_type}")

    # -------------------------------------------------------------------------
    # Session types
    # -------------------------------------------------------------------------

    @timed("coach.daily_checkin")
    async def daily_checkin(self, user_id: int, now: Optional[datetime] = None) -> Outcome:
        now = now or utcnow()
        context = self.daily_context(user_id, now)
        prompt = f"""Daily check-in for a {context['personality_type']} personality:
- Recent spending: ${context['recent_spending']:.2f}
- Budget status: {context['budget_status']}
- Spending streak: {context['spending_streak']} days
- Unreviewed patterns: {', '.join(context['open_insights']) or 'none'}
- Discipline level: {context['discipline_level']}/10

Provide an encouraging daily message with one actionable tip."""
        return await self._respond(SessionType.DAILY_CHECKIN, user_id, context, prompt, now)

    @timed("coach.crisis_intervention")
    async def crisis_intervention(
        self, user_id: int, amount: float, now: Optional[datetime] = None
    ) -> Outcome:
        now = now or utcnow()
        context = self.crisis_context(user_id, amount, now)
        prompt = f"""Crisis intervention needed for a {context['personality_type']} personality:
- Crisis spending: ${context['crisis_spending']:.2f}
- Budget impact: {context['budget_impact']}
- Recent patterns: {', '.join(context['recent_patterns']) or 'none'}
- Emotional triggers: {', '.join(context['emotional_triggers']) or 'none'}
- Discipline level: {context['discipline_level']}/10

Provide supportive guidance to help them pause and recover."""
        return await self._respond(SessionType.CRISIS_INTERVENTION, user_id, context, prompt, now)

    @timed("coach.goal_review")
    async def goal_review(self, user_id: int, now: Optional[datetime] = None) -> Outcome:
        now = now or utcnow()
        context = self.goal_context(user_id)
        goals = ", ".join(f"{g['name']}: {g['current']}/{g['target']}" for g in context["goals"])
        prompt = f"""Goal review for a {context['personality_type']} personality:
- Goals: {goals or 'no active goals'}
- Recent progress: {context['recent_progress']}

Provide encouraging feedback and next steps."""
        return await self._respond(SessionType.GOAL_REVIEW, user_id, context, prompt, now)

    @timed("coach.purchase_guidance")
    async def purchase_guidance(
        self,
        user_id: int,
        amount: float,
        category: str,
        emotional_state: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome:
        now = now or utcnow()
        context = self.purchase_context(user_id, amount, category, emotional_state, now)
        remaining = context["budget_remaining"]
        if isinstance(remaining, (int, float)):
            remaining = f"${remaining:.2f}"
        prompt = f"""Purchase guidance for a {context['personality_type']} personality:
- Purchase: ${context['purchase_amount']:.2f} in {context['category']}
- Monthly category spending: ${context['monthly_category_spending']:.2f}
- Budget remaining: {remaining}
- Emotional state: {context['emotional_context'] or 'not shared'}
- Time: {context['time_of_day']}:00 on {context['day_of_week']}

Help them make a mindful decision about this purchase."""
        return await self._respond(SessionType.PURCHASE_GUIDANCE, user_id, context, prompt, now)

    # -------------------------------------------------------------------------
    # Context builders (deterministic, no model calls)
    # -------------------------------------------------------------------------

    def _traits(self, user_id: int) -> tuple:
        profile = self.repo.get_profile(user_id)
        if profile is None:
            return None, None
        return getattr(profile.personality_type, "value", profile.personality_type), profile.discipline_level

    def daily_context(self, user_id: int, now: datetime) -> dict:
        personality_type, discipline_level = self._traits(user_id)
        last_day = self.repo.transactions_for_user(user_id, since=now - timedelta(days=1), until=now)
        budget = self.repo.active_recommendation(user_id)
        goals = self.repo.active_goals(user_id, limit=DAILY_GOAL_LIMIT)
        return {
            "personality_type": personality_type,
            "discipline_level": discipline_level,
            "recent_spending": total_spend(last_day),
            "budget_status": self.budget_status(user_id, budget, now),
            "spending_streak": self.spending_streak(user_id, now),
            "upcoming_goals": [g.name for g in goals],
            "open_insights": [
                getattr(i.pattern_type, "value", i.pattern_type)
                for i in self.repo.unacknowledged_insights(user_id, limit=OPEN_INSIGHT_LIMIT)
            ],
        }

    def crisis_context(self, user_id: int, amount: float, now: datetime) -> dict:
        personality_type, discipline_level = self._traits(user_id)
        insights = self.repo.recent_insights(
            user_id, since=now - CRISIS_INSIGHT_WINDOW, limit=RECENT_INSIGHT_LIMIT
        )
        return {
            "personality_type": personality_type,
            "discipline_level": discipline_level,
            "crisis_spending": abs(amount),
            "budget_impact": NOT_AVAILABLE,
            "recent_patterns": [getattr(i.pattern_type, "value", i.pattern_type) for i in insights],
            "emotional_triggers": [
                getattr(i.emotional_context, "value", i.emotional_context)
                for i in insights
                if i.emotional_context is not None
            ],
        }

    def goal_context(self, user_id: int) -> dict:
        personality_type, _ = self._traits(user_id)
        goals = self.repo.active_goals(user_id)
        return {
            "personality_type": personality_type,
            "goals": [
                {"name": g.name, "target": g.target_amount, "current": g.current_amount or 0.0}
                for g in goals
            ],
            "recent_progress": NOT_AVAILABLE,
            "time_to_goals": NOT_AVAILABLE,
        }

    def purchase_context(
        self,
        user_id: int,
        amount: float,
        category: str,
        emotional_state: Optional[str],
        now: datetime,
    ) -> dict:
        personality_type, _ = self._traits(user_id)
        budget = self.repo.active_recommendation(user_id)
        category_spending = self.category_spending_this_month(user_id, category, now)
        return {
            "personality_type": personality_type,
            "purchase_amount": abs(amount),
            "category": category,
            "monthly_category_spending": category_spending,
            "budget_remaining": self.category_budget_remaining(
                user_id, budget, category, category_spending, now
            ),
            "similar_recent_purchases": NOT_AVAILABLE,
            "emotional_context": emotional_state,
            "time_of_day": now.hour,
            "day_of_week": now.strftime("%A"),
        }

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _monthly_income(self, user_id: int, now: datetime) -> float:
        return total_income(self.repo.transactions_for_user(user_id, since=now - MONTH_WINDOW, until=now))

    def budget_status(self, user_id: int, budget: Optional[BudgetRecommendation], now: datetime) -> str:
        """Share of this month's desires budget left (or overspent)."""
        if budget is None:
            return "No active budget"

        monthly_income = self._monthly_income(user_id, now)
        budget_amount = monthly_income * (budget.desires_allocation / 100.0)
        if monthly_income <= 0 or budget_amount <= 0:
            return "Unable to calculate"

        spent = total_spend(
            self.repo.transactions_for_user(user_id, since=_start_of_month(now), until=now, expenses_only=True)
        )
        remaining = budget_amount - spent
        if remaining > 0:
            return f"{round(remaining / budget_amount * 100)}% budget remaining"
        return f"{round(abs(remaining) / budget_amount * 100)}% over budget"

    def spending_streak(self, user_id: int, now: datetime) -> int:
        """
        Consecutive days, counting back from today, whose spend stayed within
        1.2x the average spending day of the last 30 days.
        """
        start = now - timedelta(days=STREAK_WINDOW_DAYS)
        per_day = daily_spend(
            self.repo.transactions_for_user(user_id, since=start, until=now, expenses_only=True)
        )
        average = sum(per_day.values()) / len(per_day) if per_day else 0.0
        threshold = average * GOOD_DAY_MULTIPLIER

        streak = 0
        day: date = now.date()
        while day >= start.date():
            if per_day.get(day, 0.0) > threshold:
                break
            streak += 1
            day -= timedelta(days=1)
        return streak

    def category_spending_this_month(self, user_id: int, category: str, now: datetime) -> float:
        if not category:
            return 0.0
        return total_spend(
            self.repo.transactions_for_user(
                user_id, since=_start_of_month(now), until=now, expenses_only=True, category=category
            )
        )

    def category_budget_remaining(
        self,
        user_id: int,
        budget: Optional[BudgetRecommendation],
        category: str,
        spent: float,
        now: datetime,
    ):
        """Dollar amount left for `category`, or NOT_AVAILABLE when the budget has no share for it."""
        if budget is None or not category:
            return NOT_AVAILABLE
        breakdown = {str(k).lower(): v for k, v in (budget.category_breakdown or {}).items()}
        share = breakdown.get(category.lower())
        if share is None:
            return NOT_AVAILABLE
        monthly_income = self._monthly_income(user_id, now)
        return round(monthly_income * float(share) / 100.0 - spent, 2)

    # -------------------------------------------------------------------------
    # Reasoning + persistence
    # -------------------------------------------------------------------------

    async def _respond(
        self,
        session_type: SessionType,
        user_id: int,
        context: dict,
        prompt: str,
        now: datetime,
    ) -> Outcome:
        fallback_reason = None
        try:
            text = (await self.reasoner.complete(
                system_prompt(session_type),
                prompt,
                temperature=TEMPERATURE,
                max_tokens=MAX_TOKENS,
            )).strip()
            if not text:
                raise ReasoningError("Empty coaching response")
        except Exception as e:
            fallback_reason = f"{type(e).__name__}: {e}"
            log_fallback(COMPONENT, fallback_reason)
            text = fallback_response(session_type)

        session = self.repo.add_session(
            AiCoachingSession(
                user_id=user_id,
                session_type=session_type,
                context_data=context,
                ai_response=text,
                response_source=ResponseSource.FALLBACK if fallback_reason else ResponseSource.AI,
                created_at=now,
            )
        )
        metrics.increment("coaching.sessions", tags={"type": session_type.value})
        logger.info(
            "Coaching session recorded",
            user_id=user_id,
            session_type=session_type.value,
            source=session.response_source.value,
        )

        if fallback_reason is not None:
            return Fallback(session, fallback_reason)
        return Success(session)
