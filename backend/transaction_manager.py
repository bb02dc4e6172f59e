"""Transaction context manager for safe database writes.

Wraps a short-lived SQLAlchemy session in a transaction with automatic
rollback on failure. The session is always closed on exit.
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from error_handler import DatabaseError, MoviePollsError

logger = logging.getLogger(__name__)


@contextmanager
def transaction(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Execute database work inside a transaction.

    Usage::

        with transaction(self._sessions) as session:
            session.add(row)

    Application errors raised inside the block roll back and propagate
    unchanged; driver errors roll back and are re-raised as DatabaseError.

    Yields:
        SQLAlchemy session bound to a fresh transaction.

    Raises:
        DatabaseError: If the transaction fails and is rolled back.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except MoviePollsError:
        session.rollback()
        raise
    except IntegrityError as exc:
        session.rollback()
        logger.warning("Transaction rolled back (integrity): %s", exc)
        raise DatabaseError(
            str(exc.orig) if exc.orig is not None else str(exc),
            code="DB_002",
            context={"sql_error": type(exc).__name__},
        ) from exc
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Transaction rolled back: %s", exc)
        raise DatabaseError(str(exc), context={"sql_error": type(exc).__name__}) from exc
    except Exception as exc:
        session.rollback()
        logger.error("Transaction rolled back (unexpected): %s", exc)
        raise
    finally:
        session.close()
