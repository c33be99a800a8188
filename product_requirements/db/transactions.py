"""Transaction helpers.

Writes go through ``run_in_transaction``: the unit of work runs inside one
database transaction, commits on success, rolls back on any failure, and is
retried with exponential backoff when the store reports a transient error
(lock timeout, deadlock, serialization failure, dropped connection).
"""

import random
import time
from dataclasses import dataclass
from typing import Callable, Type, TypeVar

import structlog
from sqlalchemy import text, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import get_settings
from ..deadline import check_deadline, remaining
from ..errors import ConflictError, ServiceError, StorageError

logger = structlog.get_logger()

T = TypeVar("T")

TRANSIENT_MARKERS = (
    "database is locked",
    "database table is locked",
    "lock timeout",
    "lock_timeout",
    "deadlock",
    "could not serialize",
    "serialization failure",
    "connection reset",
    "server closed the connection",
)


@dataclass(frozen=True, slots=True)
class ExponentialBackoff:
    """Exponential backoff calculator with jitter.

    delay = min(base * multiplier ** attempt, max_delay), then spread by
    +/- jitter/2 of itself.
    """

    base: float = 0.05
    max_delay: float = 1.0
    multiplier: float = 2.0
    jitter: float = 0.1

    def delay(self, attempt: int) -> float:
        capped_delay = min(self.base * (self.multiplier**attempt), self.max_delay)
        if self.jitter > 0:
            jitter_range = capped_delay * self.jitter
            capped_delay = max(
                0.0, capped_delay + random.uniform(-jitter_range / 2, jitter_range / 2)
            )
        return capped_delay


DEFAULT_BACKOFF = ExponentialBackoff()


def is_transient(exc: SQLAlchemyError) -> bool:
    """True for store failures worth retrying."""
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    if isinstance(exc, OperationalError):
        message = str(exc.orig).lower()
        return any(marker in message for marker in TRANSIENT_MARKERS)
    return False


def _is_postgres(db: Session) -> bool:
    return db.get_bind().dialect.name == "postgresql"


def _begin(db: Session, serializable: bool) -> None:
    if db.in_transaction():
        # End any read-only transaction left by earlier lookups
        db.commit()
    if not _is_postgres(db):
        return
    if serializable:
        db.connection(execution_options={"isolation_level": "SERIALIZABLE"})
    left = remaining()
    if left is not None:
        timeout_ms = max(1, int(left * 1000))
        db.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))


def run_in_transaction(
    db: Session,
    work: Callable[[], T],
    *,
    operation: str,
    serializable: bool = False,
    backoff: ExponentialBackoff = DEFAULT_BACKOFF,
) -> T:
    """Run ``work`` in a single transaction, retrying transient failures.

    Service errors raised by ``work`` roll the transaction back and propagate
    unchanged. Integrity violations surface as ``ConflictError``; other store
    failures surface as ``StorageError`` once the retry budget is spent.
    """
    attempts = max(1, get_settings().storage_retry_attempts)

    for attempt in range(attempts):
        check_deadline(operation)
        try:
            _begin(db, serializable)
            result = work()
            db.commit()
            return result
        except ServiceError:
            db.rollback()
            raise
        except IntegrityError as exc:
            db.rollback()
            logger.info("integrity_conflict", operation=operation, error=str(exc.orig))
            raise ConflictError(
                f"{operation} conflicts with existing data"
            ) from exc
        except SQLAlchemyError as exc:
            db.rollback()
            if is_transient(exc) and attempt + 1 < attempts:
                delay = backoff.delay(attempt)
                logger.warning(
                    "transient_storage_error",
                    operation=operation,
                    attempt=attempt + 1,
                    retry_in=round(delay, 3),
                    error=str(exc.orig) if isinstance(exc, DBAPIError) else str(exc),
                )
                time.sleep(delay)
                continue
            logger.error("storage_error", operation=operation, error=str(exc))
            raise StorageError(f"Storage failure during {operation}") from exc

    raise StorageError(f"Storage failure during {operation}")


def lock_row(db: Session, model: Type, row_id: str) -> None:
    """Take a write lock on one row for the rest of the transaction.

    PostgreSQL uses ``SELECT ... FOR UPDATE``; SQLite has no row locks, so a
    self-assigning UPDATE acquires the database write lock instead.
    """
    if _is_postgres(db):
        db.query(model.id).filter(model.id == row_id).with_for_update().one_or_none()
    else:
        db.execute(
            update(model)
            .where(model.id == row_id)
            .values(id=model.id)
            .execution_options(synchronize_session=False)
        )
