"""
Transaction retry helper.

Runs a unit of work inside the session's transaction and commits it.
On a unique-key conflict or a transient storage error the transaction is
rolled back and the unit of work re-run from scratch, so a retry never
sees half-applied writes.
"""

import logging
import time
from typing import Callable, Tuple, Type, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_RETRY_ON: Tuple[Type[Exception], ...] = (IntegrityError, OperationalError)


def run_in_transaction(
    session: Session,
    work: Callable[[], T],
    *,
    attempts: int = DEFAULT_ATTEMPTS,
    retry_on: Tuple[Type[Exception], ...] = DEFAULT_RETRY_ON,
    backoff_seconds: float = 0.05,
    operation: str = "transaction",
) -> T:
    """
    Execute work() and commit, retrying the whole unit on retry_on errors.

    Raises:
        The last error once attempts are exhausted.
    """
    for attempt in range(1, attempts + 1):
        try:
            result = work()
            session.commit()
            return result
        except retry_on as e:
            session.rollback()
            if attempt >= attempts:
                logger.error("Transaction failed after retries", extra={
                    "operation": operation,
                    "attempts": attempt,
                    "error_type": type(e).__name__,
                })
                raise
            logger.warning("Retrying transaction", extra={
                "operation": operation,
                "attempt": attempt,
                "error_type": type(e).__name__,
            })
            time.sleep(backoff_seconds * attempt)
        except Exception:
            session.rollback()
            raise
    raise RuntimeError("unreachable")
