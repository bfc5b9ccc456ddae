from contextlib import contextmanager
from typing import Iterator
import logging

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from medconnect.core.config import settings
from medconnect.core.exceptions import ConcurrencyConflictError

logger = logging.getLogger(__name__)


def build_engine(url: str, echo: bool = False):
    """Create a synchronous engine for the given URL"""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)

    return create_engine(
        url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=echo,
    )


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False
)

# Base model
Base = declarative_base()


def get_db() -> Iterator[Session]:
    """Dependency to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session, operation: str = "transaction") -> Iterator[Session]:
    """Run a block as one all-or-nothing unit of work.

    Commits on success. Any failure rolls back everything written inside the
    block; optimistic-lock and uniqueness races surface as
    ConcurrencyConflictError.
    """
    try:
        yield db
        db.commit()
    except (StaleDataError, IntegrityError) as exc:
        db.rollback()
        logger.warning(f"Concurrent modification during {operation}: {exc.__class__.__name__}")
        raise ConcurrencyConflictError(
            details={"operation": operation}
        ) from exc
    except Exception:
        db.rollback()
        raise


def init_db(bind=None):
    """Initialize database tables"""
    import medconnect.models  # noqa: F401  registers every mapper on Base.metadata

    Base.metadata.create_all(bind=bind or engine)