"""
Pytest configuration and shared fixtures for Smart Financial Coach tests.

This file is automatically loaded by pytest and provides:
    - In-memory database, session and repository fixtures
    - A seeded family with one user and checking / credit card accounts
    - A transaction builder
    - A scripted reasoning capability (FakeReasoner)

Author: Smart Financial Coach Team
"""

import json
import pytest
import sys
from pathlib import Path
from datetime import datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from database import Base, build_session_factory  # noqa: E402
from models import (  # noqa: E402
    Family, User, Account, AccountType, Transaction, FinancialPersonality,
    PersonalityType,
)
from repository import Repository  # noqa: E402
from services.ai_service import ReasoningError  # noqa: E402

# Wednesday, midday: outside every emotional spending window
NOW = datetime(2025, 3, 12, 12, 0, 0)


# =============================================================================
# Reasoning capability double
# =============================================================================

class FakeReasoner:
    """
    Returns queued responses in order. A queued exception is raised instead;
    an empty queue raises ReasoningError like an unconfigured client.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def complete(self, system_instruction, user_prompt, temperature, max_tokens):
        self.calls.append({
            "system_instruction": system_instruction,
            "user_prompt": user_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if not self.responses:
            raise ReasoningError("No scripted response")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            return json.dumps(response)
        return response


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    import models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = build_session_factory(engine)()
    yield session
    session.close()


@pytest.fixture
def repo(db):
    return Repository(db)


@pytest.fixture
def family(db):
    family = Family(name="Rivera")
    db.add(family)
    db.commit()
    return family


@pytest.fixture
def user(db, family):
    user = User(family_id=family.id, email="sam@example.com", name="Sam")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def checking(db, family):
    account = Account(family_id=family.id, name="Everyday", account_type=AccountType.CHECKING)
    db.add(account)
    db.commit()
    return account


@pytest.fixture
def credit_card(db, family):
    account = Account(family_id=family.id, name="Visa", account_type=AccountType.CREDIT_CARD)
    db.add(account)
    db.commit()
    return account


# =============================================================================
# Transaction Fixtures
# =============================================================================

@pytest.fixture
def add_txn(db, user, checking):
    """Build and persist a transaction owned by `user`."""

    def _add(amount, occurred_at=None, category=None, merchant=None, account=None, owner=user):
        transaction = Transaction(
            account_id=(account or checking).id,
            user_id=owner.id if owner is not None else None,
            occurred_at=occurred_at or NOW - timedelta(days=1),
            amount=amount,
            category=category,
            merchant=merchant,
        )
        db.add(transaction)
        db.commit()
        return transaction

    return _add


@pytest.fixture
def profile(db, user):
    """A current profile for `user`, analyzed one day before NOW."""
    personality = FinancialPersonality(
        user_id=user.id,
        personality_type=PersonalityType.IMPULSIVE_SPENDER,
        risk_tolerance=7,
        discipline_level=4,
        spending_triggers=["late_night", "stress"],
        financial_traumas=[],
        lifestyle_preferences={"dining": "frequent"},
        confidence_score=80,
        analysis_summary="Spends on impulse late at night.",
        last_analyzed_at=NOW - timedelta(days=1),
    )
    db.add(personality)
    db.commit()
    return personality


# =============================================================================
# Test Utilities
# =============================================================================

def assert_allocations_sum_to_100(recommendation, tolerance: float = 0.0) -> None:
    total = (
        recommendation.mandatory_allocation
        + recommendation.desires_allocation
        + recommendation.investment_allocation
    )
    assert abs(total - 100) <= tolerance + 1e-9, f"Allocations sum to {total}"
