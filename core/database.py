from contextlib import contextmanager
from typing import Callable, Generator, Iterator, Optional, TypeVar
import logging
import time

from sqlalchemy import exc as sa_exc, text
from sqlmodel import SQLModel, create_engine, Session

from core.config import settings
from core.exceptions import TransientFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ============================================================
# Create SQLModel engine
# ============================================================
DATABASE_URL = settings.DATABASE_URL


def build_engine(url: str = DATABASE_URL):
    if url.startswith("sqlite"):
        return create_engine(
            url,
            echo=False,
            connect_args={
                "check_same_thread": False,
                # Seconds a writer waits on another connection's write lock
                "timeout": settings.SQLITE_BUSY_TIMEOUT_SECONDS,
            },
        )
    # For PostgreSQL, pool_pre_ping avoids stale connections
    return create_engine(
        url,
        echo=False,
        pool_pre_ping=True,
    )


if DATABASE_URL.startswith("sqlite"):
    logger.warning("Using local SQLite database: %s", DATABASE_URL)
engine = build_engine(DATABASE_URL)


# ============================================================
# Create tables (called at startup)
# ============================================================
def create_db_and_tables(bind=None) -> None:
    """
    Create all database tables based on SQLModel models.
    This runs automatically at app startup.
    """
    # Import registers the table metadata
    import models.models  # noqa: F401

    try:
        SQLModel.metadata.create_all(bind or engine)
        logger.info("All database tables created successfully.")
    except Exception as e:
        logger.error("Failed to create tables: %s", e)
        raise


# ============================================================
# Dependency: FastAPI session generator
# ============================================================
def get_session() -> Generator[Session, None, None]:
    """
    Provides a SQLModel Session to FastAPI dependencies.
    Closes automatically after request completes.
    """
    with Session(engine) as session:
        yield session


def session_factory() -> Session:
    """Fresh session outside the request session (used by the audit log)."""
    return Session(engine)


# ============================================================
# Transaction boundary
# ============================================================
@contextmanager
def transaction(session: Session, timeout: Optional[float] = None) -> Iterator[Session]:
    """Commit on success, roll back on any error.

    Contention and timeouts from the store surface as ``TransientFailure``
    so the caller can retry; everything else propagates unchanged.
    ``timeout`` (seconds, default ``TRANSACTION_TIMEOUT_SECONDS``) bounds the
    whole block. On PostgreSQL it is also pushed down as the statement timeout.
    """
    timeout = settings.TRANSACTION_TIMEOUT_SECONDS if timeout is None else timeout
    started = time.monotonic()
    try:
        if timeout and session.get_bind().dialect.name == "postgresql":
            session.execute(text(f"SET LOCAL statement_timeout = {int(timeout * 1000)}"))
        yield session
        if timeout and time.monotonic() - started > timeout:
            raise sa_exc.TimeoutError(f"Transaction exceeded its {timeout}s deadline")
        session.commit()
    except (sa_exc.OperationalError, sa_exc.TimeoutError) as exc:
        session.rollback()
        logger.warning("Transaction aborted by the store: %s", exc)
        raise TransientFailure("The store could not complete the transaction. Please retry.") from exc
    except Exception:
        session.rollback()
        raise


def run_with_retry(
    fn: Callable[[], T],
    attempts: int = settings.TRANSACTION_RETRY_ATTEMPTS,
    backoff: float = settings.TRANSACTION_RETRY_BACKOFF_SECONDS,
) -> T:
    """Call ``fn`` and retry on ``TransientFailure`` only, with exponential backoff."""
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except TransientFailure:
            if attempt == attempts:
                raise
            delay = backoff * (2 ** (attempt - 1))
            logger.info("Transient store failure (attempt %s/%s), retrying in %.2fs", attempt, attempts, delay)
            time.sleep(delay)
    raise RuntimeError("run_with_retry requires attempts >= 1")
