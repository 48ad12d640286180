"""
Pytest configuration and fixtures

Every test gets its own SQLite database file under tmp_path, created from the
models. Nothing is shared between tests. Redis is disabled for the whole run:
cache reads miss and locks fail open, exactly as in production without Redis.
"""
import pytest
import sys
import os
from datetime import date, datetime, timezone

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Must be set before core.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.pop("INTERNAL_API_TOKEN", None)

from sqlalchemy import event
from sqlalchemy.orm import sessionmaker

from core.database import Base, build_engine
import models  # noqa: F401  (registers tables on Base.metadata)

SETTLEMENT_DATE = date(2026, 1, 14)
# Goals made by fixtures predate every date the tests settle.
GOAL_SET_AT = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _no_redis(monkeypatch):
    """Run every test as if Redis were down."""
    import core.cache
    monkeypatch.setattr(core.cache, "get_redis_client", lambda: None)


@pytest.fixture(scope="function")
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'goalguard.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    """Same session settings as core.database.SessionLocal, bound to the test database."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


@pytest.fixture(scope="function")
def db_session(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(scope="function")
def locking_session_factory(tmp_path, engine):
    """
    Sessions on the same database file whose transactions take the SQLite
    write lock at BEGIN.

    SQLite ignores FOR UPDATE, so this is what makes concurrent settlement
    units queue behind each other the way row locks do on Postgres.
    """
    locking = build_engine(f"sqlite:///{tmp_path / 'goalguard.db'}", connect_args={"check_same_thread": False, "timeout": 30})

    @event.listens_for(locking, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(locking, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    yield sessionmaker(autocommit=False, autoflush=False, bind=locking, expire_on_commit=False)
    locking.dispose()


@pytest.fixture
def make_user(db_session):
    """
    Create a committed profile.

    coins are granted through the ledger so the balance invariant holds from
    the start.
    """
    def _make(streak: int = 0, coins: int = 0, username: str = "tester"):
        from models import TransactionType
        from services import coin_ledger, goals

        profile = goals.create_profile(db_session, username=username)
        profile.current_streak_length = streak
        profile.longest_streak_length = streak
        db_session.flush()
        if coins:
            coin_ledger.award(db_session, profile.user_id, coins, TransactionType.MANUAL, "Opening balance")
        db_session.commit()
        return profile

    return _make


@pytest.fixture
def make_goal(db_session):
    def _make(user_id, goal_type: str = "steps", target_value: float = 10000, created_at=GOAL_SET_AT):
        from services import goals

        goal = goals.set_active_goal(db_session, user_id, goal_type, target_value)
        goal.created_at = created_at
        db_session.commit()
        return goal

    return _make


@pytest.fixture
def make_progress(db_session):
    def _make(user_id, day=SETTLEMENT_DATE, goal_id=None, status="pending", **measurements):
        from models import DailyProgress

        record = DailyProgress(
            user_id=user_id,
            date=day,
            goal_id=goal_id,
            progress_data=dict(measurements),
            status=status,
        )
        db_session.add(record)
        db_session.commit()
        return record

    return _make


@pytest.fixture
def grant_reward(db_session):
    def _grant(user_id, kind: str, quantity: int = 1):
        from services import reward_inventory

        reward_inventory.grant(db_session, user_id, kind, quantity)
        db_session.commit()

    return _grant
