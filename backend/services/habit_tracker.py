"""Streak bookkeeping for tracked spending habits."""

from datetime import datetime
from typing import Optional

from models import utcnow
from repository import Repository
from .feedback import FeedbackResult


def advance_streak(is_positive: bool, occurred: bool, streak: int, longest: int) -> tuple[int, int]:
    """
    Next (current_streak, longest_streak) after one daily check.

    Positive habits build a streak when they occur; negative habits build a
    streak while they are avoided. Anything else resets the streak to 0.
    longest never decreases.
    """
    kept = occurred if is_positive else not occurred
    if not kept:
        return 0, longest
    streak += 1
    return streak, max(longest, streak)


class HabitTracker:
    def __init__(self, repo: Repository):
        self.repo = repo

    def record_check(
        self, user_id: int, habit_id: int, occurred: bool, now: Optional[datetime] = None
    ) -> FeedbackResult:
        habit = self.repo.get_habit(user_id, habit_id)
        if habit is None:
            return FeedbackResult.not_found("Habit")

        habit.current_streak, habit.longest_streak = advance_streak(
            habit.is_positive_habit,
            occurred,
            habit.current_streak or 0,
            habit.longest_streak or 0,
        )
        if occurred:
            habit.last_occurrence_at = now or utcnow()
        self.repo.save(habit)
        return FeedbackResult.success(habit)
