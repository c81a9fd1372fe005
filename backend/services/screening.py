"""
Cheap pre-filter deciding whether a transaction deserves deep analysis.

A transaction is screened in when it is an expense and any of:
    - its amount exceeds SCREENING_AMOUNT
    - the user paid the same merchant at least FREQUENT_MERCHANT_COUNT times
      in the last week
    - it happened inside an emotional spending window
"""

from datetime import datetime, timedelta

SCREENING_AMOUNT = 50.0
FREQUENT_MERCHANT_COUNT = 3
MERCHANT_LOOKBACK = timedelta(days=7)

FRIDAY = 4
SUNDAY = 6


def in_emotional_window(moment: datetime) -> bool:
    """
    Common emotional spending times:
        - late night, 22:00 through 02:59
        - Sunday evening, 18:00 through 22:59 ("Sunday scaries")
        - Friday evening, 18:00 through 22:59 (celebration / stress relief)
    """
    hour = moment.hour
    if hour >= 22 or hour <= 2:
        return True
    if moment.weekday() in (SUNDAY, FRIDAY) and 18 <= hour <= 22:
        return True
    return False


def should_analyze(amount: float, occurred_at: datetime, recent_merchant_count: int = 0) -> bool:
    """Screening decision for one signed transaction amount."""
    if amount >= 0:
        return False
    return (
        abs(amount) > SCREENING_AMOUNT
        or recent_merchant_count >= FREQUENT_MERCHANT_COUNT
        or in_emotional_window(occurred_at)
    )


def screen_transaction(repo, user_id: int, transaction, now: datetime) -> bool:
    """Apply should_analyze() using the user's last-week visits to the same merchant."""
    if transaction.amount >= 0:
        return False
    merchant_count = 0
    if transaction.merchant:
        merchant_count = repo.count_merchant_transactions(
            user_id, transaction.merchant, since=now - MERCHANT_LOOKBACK
        )
    return should_analyze(transaction.amount, transaction.occurred_at, merchant_count)
