"""
Module: feature_extractor.py
Description: Aggregates raw transactions into structured spending summaries.

Summaries produced:
    1. FinancialSummary - category totals, timing histograms, amount
       statistics and merchant frequency for a lookback window
    2. CashFlowSummary - monthly income/expense averages, savings rate and
       debt service used to size budgets

Everything here is pure: callers fetch the window, these functions only
aggregate. Empty input yields zeroed summaries; no average divides by zero.

Author: Smart Financial Coach Team

Usage:
    summary = summarize(repo.transactions_for_user(user_id, since=six_months_ago))
"""

from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Iterable

import pandas as pd

from schemas import FinancialSummary, CashFlowSummary, AmountStats, MerchantStats

UNCATEGORIZED = "Uncategorized"
WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

TOP_CATEGORIES = 10
TOP_MERCHANTS = 5
SMALL_PURCHASE_LIMIT = 50.0
OUTLIER_MULTIPLIER = 3.0

# Categories whose spending counts as debt service
DEBT_CATEGORIES = frozenset({"Debt Payment", "Credit Card", "Loan Payment"})
DEBT_LOOKBACK = timedelta(days=30)

_COLUMNS = ["account_id", "occurred_at", "amount", "category", "merchant"]


def _money(value) -> float:
    return round(float(value), 2)


def _frame(transactions: Iterable) -> pd.DataFrame:
    rows = [
        {
            "account_id": getattr(t, "account_id", None),
            "occurred_at": t.occurred_at,
            "amount": float(t.amount),
            "category": t.category or UNCATEGORIZED,
            "merchant": t.merchant or None,
        }
        for t in transactions
    ]
    df = pd.DataFrame(rows, columns=_COLUMNS)
    if not df.empty:
        df["occurred_at"] = pd.to_datetime(df["occurred_at"])
    return df


def _top(series: pd.Series, limit: int) -> dict[str, float]:
    """Largest values first; ties keep the alphabetical order groupby produced."""
    ranked = series.sort_values(ascending=False, kind="mergesort").head(limit)
    return {str(key): _money(value) for key, value in ranked.items()}


def _amount_stats(spend: list[float]) -> AmountStats:
    if not spend:
        return AmountStats()
    ordered = sorted(spend)
    mean = sum(ordered) / len(ordered)
    return AmountStats(
        mean=_money(mean),
        median=_money(ordered[len(ordered) // 2]),
        outlier_count=sum(1 for a in ordered if a > mean * OUTLIER_MULTIPLIER),
        small_frequent_count=sum(1 for a in ordered if a < SMALL_PURCHASE_LIMIT),
    )


# =============================================================================
# Behavioral summary
# =============================================================================

def summarize(
    transactions: Iterable,
    top_categories: int = TOP_CATEGORIES,
    top_merchants: int = TOP_MERCHANTS,
) -> FinancialSummary:
    """Build the FinancialSummary for an already-windowed list of transactions."""
    df = _frame(transactions)
    if df.empty:
        return FinancialSummary()

    expenses = df[df["amount"] < 0].copy()
    expenses["spend"] = expenses["amount"].abs()
    total_income = df.loc[df["amount"] > 0, "amount"].sum()

    if expenses.empty:
        return FinancialSummary(
            transaction_count=len(df),
            total_income=_money(total_income),
        )

    by_day = expenses.groupby(expenses["occurred_at"].dt.day_name())["spend"].sum()
    by_month = expenses.groupby(expenses["occurred_at"].dt.strftime("%Y-%m"))["spend"].sum()

    merchants = {}
    named = expenses[expenses["merchant"].notna()]
    if not named.empty:
        grouped = named.groupby("merchant")["spend"].agg(["count", "sum"])
        grouped = grouped.sort_values("sum", ascending=False, kind="mergesort").head(top_merchants)
        merchants = {
            str(merchant): MerchantStats(count=int(row["count"]), total=_money(row["sum"]))
            for merchant, row in grouped.iterrows()
        }

    return FinancialSummary(
        transaction_count=len(df),
        total_spend=_money(expenses["spend"].sum()),
        total_income=_money(total_income),
        categories=_top(expenses.groupby("category")["spend"].sum(), top_categories),
        weekday_spend={day: _money(by_day[day]) for day in WEEKDAYS if day in by_day.index},
        monthly_spend={str(month): _money(total) for month, total in by_month.items()},
        amounts=_amount_stats(expenses["spend"].tolist()),
        merchants=merchants,
    )


# =============================================================================
# Cash flow summary
# =============================================================================

def cash_flow(
    transactions: Iterable,
    now: datetime,
    debt_account_ids: Iterable[int] = (),
    months: int = 3,
) -> CashFlowSummary:
    """Monthly averages over a `months`-long window plus last-30-day debt service."""
    df = _frame(transactions)
    if df.empty:
        return CashFlowSummary()

    income = float(df.loc[df["amount"] > 0, "amount"].sum())
    expenses = df[df["amount"] < 0].copy()
    expenses["spend"] = expenses["amount"].abs()
    expense_total = float(expenses["spend"].sum())

    categories = {}
    if not expenses.empty:
        categories = _top(expenses.groupby("category")["spend"].sum() / months, TOP_CATEGORIES)

    savings_rate = round((income - expense_total) / income * 100, 1) if income > 0 else 0.0

    recent = df[df["occurred_at"] >= pd.Timestamp(now - DEBT_LOOKBACK)]
    debt_mask = recent["category"].isin(list(DEBT_CATEGORIES)) | recent["account_id"].isin(list(debt_account_ids))
    debt_payments = abs(float(recent.loc[debt_mask, "amount"].sum()))

    return CashFlowSummary(
        monthly_income=_money(income / months),
        monthly_expenses=_money(expense_total / months),
        expense_categories=categories,
        savings_rate=savings_rate,
        debt_payments=_money(debt_payments),
    )


# =============================================================================
# Small helpers shared by the analyzers
# =============================================================================

def total_spend(transactions: Iterable) -> float:
    """Absolute sum of the expenses in `transactions`."""
    return _money(sum(-t.amount for t in transactions if t.amount < 0))


def total_income(transactions: Iterable) -> float:
    return _money(sum(t.amount for t in transactions if t.amount > 0))


def daily_spend(transactions: Iterable) -> dict[date, float]:
    """Expense magnitude per calendar day."""
    per_day = defaultdict(float)
    for t in transactions:
        if t.amount < 0:
            per_day[t.occurred_at.date()] += -t.amount
    return dict(per_day)
