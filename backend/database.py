"""SQLAlchemy engine and session setup for the coaching pipeline tables."""

import os

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./spending_coach.db")

Base = declarative_base()


def build_engine(url: str = DATABASE_URL, **kwargs):
    """Create an engine; SQLite connections may be shared across worker threads."""
    connect_args = kwargs.pop("connect_args", {})
    if url.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)
    return create_engine(url, connect_args=connect_args, **kwargs)


def build_session_factory(bind):
    # Objects handed out by the repository stay readable after commit.
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = build_engine()
SessionLocal = build_session_factory(engine)


def get_db():
    """Yield a database session and close it afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Create all tables."""
    import models  # noqa: F401  (registers tables on Base.metadata)

    Base.metadata.create_all(bind=bind or engine)
