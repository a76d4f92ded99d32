"""
Database Engine & Session Management
SQLAlchemy setup with dependency injection for FastAPI.

Each committed transaction is one write batch against the store; batch jobs
commit in chunks no larger than ``STORE_BATCH_LIMIT`` operations.
"""
import os
from datetime import timezone

from sqlalchemy import create_engine, DateTime
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.types import TypeDecorator

from phrames.config import get_settings
from phrames.utils.timeutil import to_utc

settings = get_settings()

if settings.DATABASE_URL.startswith("sqlite:///"):
    os.makedirs(os.path.dirname(settings.DATABASE_URL.replace("sqlite:///", "")), exist_ok=True)

engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {},
    echo=settings.DEBUG,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, hands back aware UTC.

    Any timestamp shape accepted by ``to_utc`` may be bound, including in
    query comparisons, so callers never see mixed representations.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        value = to_utc(value)
        if value is None:
            return None
        return value.replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def get_db():
    """FastAPI dependency: yields a database session, auto-closes on finish."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Create all tables. Called once at application startup."""
    from phrames.models import campaign as _campaign_model     # noqa: F401
    from phrames.models import payment as _payment_model       # noqa: F401
    from phrames.models import user as _user_model             # noqa: F401
    from phrames.models import audit as _audit_model           # noqa: F401
    from phrames.models import expiry_log as _expiry_model     # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
