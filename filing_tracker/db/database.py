"""
Database engine, sessions and table management for the filing tracker
"""

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from filing_tracker.core.config import settings


def _engine_options(url: str) -> dict:
    """Pool and connection settings for the configured backend"""
    if url.startswith("sqlite"):
        # One shared connection so tests and background writers see the same data
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }

    ssl_mode = "require" if settings.ENVIRONMENT in ["staging", "production"] else "prefer"
    return {
        "poolclass": QueuePool,
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_recycle": settings.DATABASE_POOL_RECYCLE,
        "pool_timeout": settings.DATABASE_POOL_TIMEOUT,
        "connect_args": {
            "sslmode": ssl_mode,
            "connect_timeout": 10,
            "options": f"-c statement_timeout={settings.DATABASE_STATEMENT_TIMEOUT}",
        },
    }


engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    echo=settings.DEBUG,
    **_engine_options(settings.DATABASE_URL),
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def create_tables():
    """Create every workflow table; migrations own this outside tests"""
    # Imported for their side effect of registering tables on Base.metadata
    from filing_tracker.core import activity_logger  # noqa: F401
    from filing_tracker.models import workflow  # noqa: F401

    Base.metadata.create_all(bind=engine)


def clear_tables(db: Session):
    """Delete all rows, children first"""
    for table in reversed(Base.metadata.sorted_tables):
        db.execute(table.delete())
    db.commit()


def health_check():
    """Perform database health check"""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True, "Database connection healthy"
    except Exception as e:
        return False, f"Database connection failed: {str(e)}"
