"""
Sequence store: durable, year-scoped counters with atomic allocation.

Every allocation is a single isolated transaction. On PostgreSQL and SQLite
the read-increment-write cycle and the create-if-absent path collapse into
one ``INSERT ... ON CONFLICT DO UPDATE ... RETURNING`` statement; other
dialects lock the counter row with ``SELECT ... FOR UPDATE``.
"""

from typing import Optional, Callable
from datetime import datetime
import logging
import time

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session

from brokerdesk.models import SequenceCounter
from brokerdesk.errors import SequenceExhausted, ValidationError
from brokerdesk.cache import config_cache

logger = logging.getLogger("brokerdesk")

# Errors that mean "another transaction got there first"; anything else propagates.
RETRYABLE_ERRORS = (OperationalError, IntegrityError)


class SequenceStore:
    """
    Allocates strictly increasing, gapless integers per (scope, year, subtype).

    The store owns its transactions: each ``allocate`` call opens a fresh
    session from ``session_factory``, commits the new counter value and
    returns it. Callers never touch ``SequenceCounter`` rows directly.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        max_retries: Optional[int] = None,
        retry_backoff_seconds: Optional[float] = None,
    ):
        settings = config_cache.get_section("sequences")
        self._session_factory = session_factory
        self.max_retries = max_retries if max_retries is not None else int(settings.get("max_retries", 5))
        self.retry_backoff_seconds = (
            retry_backoff_seconds
            if retry_backoff_seconds is not None
            else float(settings.get("retry_backoff_seconds", 0.05))
        )

    def allocate(self, scope: str, year: int, subtype: Optional[str] = None) -> int:
        """
        Allocate the next value for a counter key.

        Args:
            scope: Counter scope tag (CLIENT, POLICY, SLIP, ENDORSEMENT, ...)
            year: Four-digit calendar year
            subtype: Optional subtype giving the key independent numbering

        Returns:
            The allocated value, starting at 1 for a fresh key

        Raises:
            SequenceExhausted: The allocation kept conflicting after the
                bounded number of retries.
        """
        if not scope:
            raise ValidationError("Sequence scope is required", field="scope")
        if not isinstance(year, int) or year < 1000 or year > 9999:
            raise ValidationError("Sequence year must be a four-digit integer", field="year", year=year)

        subtype_key = subtype or ""
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            session = self._session_factory()
            try:
                value = self._allocate_once(session, scope, year, subtype_key)
                session.commit()
                return value
            except RETRYABLE_ERRORS as e:
                session.rollback()
                last_error = e
                logger.warning(
                    f"Sequence allocation conflict | "
                    f"scope={scope} | year={year} | subtype={subtype_key or '-'} | "
                    f"attempt={attempt}/{self.max_retries} | error={e.__class__.__name__}"
                )
                if attempt < self.max_retries and self.retry_backoff_seconds > 0:
                    time.sleep(self.retry_backoff_seconds * attempt)
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

        logger.error(
            f"Sequence allocation failed | "
            f"scope={scope} | year={year} | subtype={subtype_key or '-'} | "
            f"retries={self.max_retries} | error={last_error}"
        )
        raise SequenceExhausted(
            f"Could not allocate a {scope} sequence for {year} after {self.max_retries} attempts",
            scope=scope,
            year=year,
            subtype=subtype_key or None,
            attempts=self.max_retries,
        )

    def current(self, scope: str, year: int, subtype: Optional[str] = None) -> int:
        """Return the last allocated value for a key, 0 if none yet."""
        with self._session_factory() as session:
            counter = session.query(SequenceCounter).filter(
                SequenceCounter.scope == scope,
                SequenceCounter.year == year,
                SequenceCounter.subtype == (subtype or ""),
            ).first()
            return counter.last_allocated if counter else 0

    def _allocate_once(self, session: Session, scope: str, year: int, subtype_key: str) -> int:
        dialect = session.get_bind().dialect.name
        if dialect in ("postgresql", "sqlite"):
            return self._upsert(session, dialect, scope, year, subtype_key)
        return self._lock_and_increment(session, scope, year, subtype_key)

    def _upsert(self, session: Session, dialect: str, scope: str, year: int, subtype_key: str) -> int:
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            from sqlalchemy.dialects.sqlite import insert

        now = datetime.utcnow()
        table = SequenceCounter.__table__
        stmt = insert(table).values(
            scope=scope,
            year=year,
            subtype=subtype_key,
            last_allocated=1,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.scope, table.c.year, table.c.subtype],
            set_={
                "last_allocated": table.c.last_allocated + 1,
                "updated_at": now,
            },
        ).returning(table.c.last_allocated)
        return int(session.execute(stmt).scalar_one())

    def _lock_and_increment(self, session: Session, scope: str, year: int, subtype_key: str) -> int:
        now = datetime.utcnow()
        counter = session.execute(
            select(SequenceCounter)
            .where(
                SequenceCounter.scope == scope,
                SequenceCounter.year == year,
                SequenceCounter.subtype == subtype_key,
            )
            .with_for_update()
        ).scalars().first()

        if counter is None:
            # A concurrent creator makes this flush fail with IntegrityError; the caller retries.
            counter = SequenceCounter(
                scope=scope, year=year, subtype=subtype_key, last_allocated=1, created_at=now, updated_at=now
            )
            session.add(counter)
        else:
            counter.last_allocated += 1
            counter.updated_at = now
        session.flush()
        return counter.last_allocated
