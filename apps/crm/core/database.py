"""
Database configuration and session management.
"""

from sqlalchemy import create_engine, text
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import NullPool

from .settings import settings
from .logging import get_logger

logger = get_logger(__name__)

# Create database engine
if settings.database_url.startswith("sqlite"):
    # SQLite specific settings
    engine = create_engine(
        settings.database_url,
        connect_args={"check_same_thread": False},
        poolclass=NullPool
    )
else:
    engine = create_engine(
        settings.database_url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_pre_ping=True  # Verify connections before using
    )

# Create session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

# Base class for models
Base = declarative_base()


def get_db() -> Session:
    """
    Dependency to get database session.

    Usage:
        @router.get("/leads")
        def list_leads(db: Session = Depends(get_db)):
            return db.query(Lead).all()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def import_models():
    """Import every model module so the tables register with Base."""
    from ..db import models, crm_models, offer_models, supplier_models, kalkia_models, email_models  # noqa: F401


async def init_database():
    """Initialize database tables."""
    try:
        import_models()
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables initialized", tables=len(Base.metadata.tables))
    except Exception as e:
        logger.error("Failed to initialize database", error=str(e))
        raise


def check_database_health() -> bool:
    """Check if database is accessible."""
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return False


def close_database_connections():
    """Close all pooled database connections."""
    engine.dispose()
    logger.info("Database connections closed")
