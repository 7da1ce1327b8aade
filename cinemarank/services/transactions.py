"""Optimistic read-modify-write transactions with bounded retry.

Every mutation in CinemaRank is exactly one `run_atomically` call. A unit of
work reads what it needs, then stages its writes on the session; the commit
either applies everything or nothing. Conflicts with a concurrent committer
show up as:

- `StaleDataError`: an UPDATE/DELETE on a versioned row matched no row
  because someone else bumped the version after we read it;
- `IntegrityError`: two creators raced to insert the same natural key;
- SQLite's "database is locked" `OperationalError`.

On a conflict the whole unit of work is re-run against fresh state. No
component takes locks of its own.
"""
import random
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .. import config
from ..exceptions import TransactionFailed
from ..utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_TOUCHED = "cinemarank.touched"


def mark_changed(db: Session, subject_id: str, category_tag: str) -> None:
    """Record that this unit of work changed the review set of a cinema/tag."""
    db.info.setdefault(_TOUCHED, set()).add((subject_id, category_tag))


def is_conflict(exc: BaseException) -> bool:
    if isinstance(exc, (StaleDataError, IntegrityError)):
        return True
    if isinstance(exc, OperationalError):
        msg = str(exc.orig).lower()
        return "locked" in msg or "busy" in msg
    return False


class TransactionCoordinator:
    def __init__(
        self,
        session_factory,
        feed=None,
        max_attempts: int = config.TX_MAX_ATTEMPTS,
        retry_delay: float = config.TX_RETRY_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.session_factory = session_factory
        self.feed = feed
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._sleep = sleep

    def run_atomically(self, work: Callable[[Session], T], label: str = "transaction") -> T:
        """Run `work(session)` and commit it, retrying on write conflicts.

        `work` may run more than once and must not have side effects outside
        the session. Errors raised by `work` itself that are not store errors
        propagate unchanged once the session is rolled back.
        """
        last_exc: Optional[SQLAlchemyError] = None
        for attempt in range(1, self.max_attempts + 1):
            db = self.session_factory()
            try:
                result = work(db)
                db.commit()
                touched = set(db.info.get(_TOUCHED, ()))
            except SQLAlchemyError as exc:
                db.rollback()
                if not is_conflict(exc):
                    logger.error("transaction_failed", label=label, attempt=attempt, error=str(exc))
                    raise TransactionFailed(
                        f"Could not save your change ({label}). Please try again.",
                        attempts=attempt,
                        cause=exc,
                    ) from exc
                last_exc = exc
                if attempt < self.max_attempts:
                    delay = self.retry_delay * (2 ** (attempt - 1)) * random.uniform(0.5, 1.5)
                    logger.info(
                        "transaction_retry",
                        label=label,
                        attempt=attempt,
                        max_attempts=self.max_attempts,
                        conflict=type(exc).__name__,
                        delay=round(delay, 4),
                    )
                    if delay > 0:
                        self._sleep(delay)
                continue
            except BaseException:
                db.rollback()
                raise
            finally:
                db.close()

            if attempt > 1:
                logger.info("transaction_committed_after_retry", label=label, attempts=attempt)
            self._publish(touched)
            return result

        logger.warning("transaction_retries_exhausted", label=label, attempts=self.max_attempts)
        raise TransactionFailed(
            f"Could not save your change ({label}): it kept conflicting with other updates. Please try again.",
            attempts=self.max_attempts,
            cause=last_exc,
        ) from last_exc

    def read(self, fn: Callable[[Session], T], label: str = "read") -> T:
        """Run a read-only function on a fresh session."""
        db = self.session_factory()
        try:
            return fn(db)
        except SQLAlchemyError as exc:
            logger.error("read_failed", label=label, error=str(exc))
            raise TransactionFailed(f"Could not load data ({label}).", cause=exc) from exc
        finally:
            db.close()

    def _publish(self, touched) -> None:
        if self.feed is None:
            return
        for key in sorted(touched):
            self.feed.publish(key)
