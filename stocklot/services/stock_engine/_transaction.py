"""
Transaction boundary for stock mutations.

Everything an operation writes (batch rows, movements, warehouse counters) is
committed together or rolled back together. Database failures are translated
into the engine's error kinds so callers can tell "retry later" apart from a
real stock shortage.
"""

import logging
from contextlib import contextmanager
from typing import Hashable, Iterable, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm.exc import StaleDataError

from ...exceptions import ConcurrencyConflict, RetryableInfraError, StockEngineError

logger = logging.getLogger(__name__)


def _apply_statement_timeout(session, timeout_seconds: Optional[int]) -> None:
    if not timeout_seconds:
        return
    bind = session.get_bind()
    if bind.dialect.name == "postgresql":
        # SET LOCAL lasts until the end of the current transaction only
        session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_seconds * 1000)}"))


@contextmanager
def stock_transaction(
    session,
    lock_registry,
    keys: Iterable[Hashable] = (),
    *,
    lock_timeout: float = 5.0,
    store_timeout: Optional[int] = None,
    operation: str = "stock mutation",
):
    """Hold the keyed locks for ``keys`` and run one all-or-nothing unit of work."""
    with lock_registry.hold(keys, timeout=lock_timeout):
        try:
            _apply_statement_timeout(session, store_timeout)
            yield session
            session.commit()
        except StockEngineError:
            session.rollback()
            raise
        except StaleDataError as exc:
            session.rollback()
            logger.error(f"{operation}: batch row changed underneath the transaction: {exc}")
            raise ConcurrencyConflict(
                "A batch was modified concurrently; nothing was applied",
                operation=operation,
            ) from exc
        except IntegrityError as exc:
            session.rollback()
            logger.error(f"{operation}: integrity error, rolled back: {exc}")
            raise ConcurrencyConflict(
                "Conflicting write rejected by the database; nothing was applied",
                operation=operation,
            ) from exc
        except (OperationalError, PoolTimeoutError, DBAPIError) as exc:
            session.rollback()
            logger.error(f"{operation}: data store unavailable or timed out, rolled back: {exc}")
            raise RetryableInfraError(
                "Data store unavailable or timed out; nothing was applied",
                operation=operation,
            ) from exc
        except Exception:
            session.rollback()
            logger.exception(f"{operation}: unexpected failure, rolled back")
            raise
