from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from seller_analytics.config import settings

DATABASE_URL = settings.DATABASE_URL

if DATABASE_URL.startswith("sqlite"):
    # SQLite is only used for local development and tests; it cannot take the
    # QueuePool sizing arguments below.
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
        echo=False,
    )
else:
    # PostgreSQL connection settings
    engine = create_engine(
        DATABASE_URL,
        connect_args={
            "connect_timeout": 10,
            "keepalives": 1,
            "keepalives_idle": 30,
            "keepalives_interval": 10,
            "keepalives_count": 5,
        },
        echo=False,  # keep SQL logging off by default in production
        pool_pre_ping=True,
        # Sized for both sync pools running at once plus request handlers.
        pool_size=10,
        max_overflow=10,
        pool_recycle=3600,
        pool_timeout=30,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create all tables (local/dev databases only)."""
    from . import models  # noqa: F401  register mappers

    Base.metadata.create_all(bind=engine)
