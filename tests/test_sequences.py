"""
Tests for the sequence store: atomic allocation, key independence and
bounded retries.
"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from brokerdesk.errors import SequenceExhausted, ValidationError, InfrastructureError
from brokerdesk.models import SequenceCounter
from brokerdesk.services.sequences import SequenceStore


class _Dialect:
    name = "sqlite"


class _Bind:
    dialect = _Dialect()


class LockedSession:
    """Session double whose every statement fails as if the database were locked."""

    def __init__(self, calls):
        self.calls = calls

    def get_bind(self):
        return _Bind()

    def execute(self, stmt):
        self.calls.append("execute")
        raise OperationalError("INSERT INTO sequence_counter", {}, Exception("database is locked"))

    def commit(self):
        self.calls.append("commit")

    def rollback(self):
        self.calls.append("rollback")

    def close(self):
        self.calls.append("close")


class BrokenSession(LockedSession):
    def execute(self, stmt):
        self.calls.append("execute")
        raise RuntimeError("disk full")


# ============================================================================
# 1. BASIC ALLOCATION
# ============================================================================

class TestAllocate:
    """Sequential allocation for a single key."""

    def test_fresh_key_starts_at_one(self, store):
        assert store.allocate("POLICY", 2025) == 1

    def test_values_increase_by_one(self, store):
        values = [store.allocate("POLICY", 2025) for _ in range(5)]
        assert values == [1, 2, 3, 4, 5]

    def test_current_reports_last_allocated(self, store):
        assert store.current("POLICY", 2025) == 0
        store.allocate("POLICY", 2025)
        store.allocate("POLICY", 2025)
        assert store.current("POLICY", 2025) == 2

    def test_counter_row_is_persisted(self, store, engine):
        store.allocate("SLIP", 2025)
        store.allocate("SLIP", 2025)
        with Session(engine) as session:
            row = session.query(SequenceCounter).filter(SequenceCounter.scope == "SLIP").one()
            assert row.year == 2025
            assert row.subtype == ""
            assert row.last_allocated == 2

    def test_invalid_year_rejected(self, store):
        with pytest.raises(ValidationError):
            store.allocate("POLICY", 25)

    def test_missing_scope_rejected(self, store):
        with pytest.raises(ValidationError):
            store.allocate("", 2025)

    def test_row_lock_path_shares_the_counter(self, store, engine):
        """Dialects without ON CONFLICT lock the row and increment in place."""
        with Session(engine) as session:
            assert store._lock_and_increment(session, "POLICY", 2025, "") == 1
            session.commit()
        with Session(engine) as session:
            assert store._lock_and_increment(session, "POLICY", 2025, "") == 2
            session.commit()
        assert store.allocate("POLICY", 2025) == 3


# ============================================================================
# 2. KEY INDEPENDENCE
# ============================================================================

class TestKeyIndependence:
    """Scope, year and subtype each give independent numbering."""

    def test_subtypes_are_independent(self, store):
        assert store.allocate("CLIENT", 2025, "IND") == 1
        assert store.allocate("CLIENT", 2025, "IND") == 2
        assert store.allocate("CLIENT", 2025, "CORP") == 1
        assert store.allocate("CLIENT", 2025) == 1

    def test_years_are_independent(self, store):
        store.allocate("POLICY", 2024)
        store.allocate("POLICY", 2024)
        assert store.allocate("POLICY", 2025) == 1

    def test_scopes_are_independent(self, store):
        store.allocate("POLICY", 2025)
        assert store.allocate("ENDORSEMENT", 2025) == 1


# ============================================================================
# 3. CONCURRENCY
# ============================================================================

class TestConcurrency:
    """Concurrent callers never see the same value and never skip one."""

    def test_concurrent_allocations_are_unique_and_gapless(self, store):
        n = 40
        with ThreadPoolExecutor(max_workers=8) as pool:
            values = list(pool.map(lambda _: store.allocate("POLICY", 2025), range(n)))

        assert len(values) == n
        assert set(values) == set(range(1, n + 1))
        assert store.current("POLICY", 2025) == n

    def test_concurrent_first_allocation_creates_one_counter(self, store, engine):
        with ThreadPoolExecutor(max_workers=8) as pool:
            values = list(pool.map(lambda _: store.allocate("SLIP", 2026), range(8)))

        assert sorted(values) == list(range(1, 9))
        with Session(engine) as session:
            rows = session.query(SequenceCounter).filter(
                SequenceCounter.scope == "SLIP",
                SequenceCounter.year == 2026
            ).all()
            assert len(rows) == 1

    def test_concurrent_keys_do_not_interfere(self, store):
        keys = ["IND", "CORP"] * 15
        with ThreadPoolExecutor(max_workers=6) as pool:
            results = list(pool.map(lambda k: (k, store.allocate("CLIENT", 2025, k)), keys))

        ind = sorted(v for k, v in results if k == "IND")
        corp = sorted(v for k, v in results if k == "CORP")
        assert ind == list(range(1, 16))
        assert corp == list(range(1, 16))


# ============================================================================
# 4. FAILURE HANDLING
# ============================================================================

class TestFailures:
    """Bounded retries on conflicts; other errors propagate at once."""

    def test_persistent_conflict_raises_sequence_exhausted(self):
        calls = []
        store = SequenceStore(lambda: LockedSession(calls), max_retries=3, retry_backoff_seconds=0)

        with pytest.raises(SequenceExhausted) as exc_info:
            store.allocate("POLICY", 2025)

        assert calls.count("execute") == 3
        assert calls.count("rollback") == 3
        assert "commit" not in calls
        assert exc_info.value.details["attempts"] == 3
        assert exc_info.value.details["scope"] == "POLICY"

    def test_sequence_exhausted_is_infrastructure_error(self):
        store = SequenceStore(lambda: LockedSession([]), max_retries=1, retry_backoff_seconds=0)
        with pytest.raises(InfrastructureError) as exc_info:
            store.allocate("SLIP", 2025)
        assert exc_info.value.http_status == 503
        assert exc_info.value.code == "SEQUENCE_EXHAUSTED"

    def test_unexpected_error_is_not_retried(self):
        calls = []
        store = SequenceStore(lambda: BrokenSession(calls), max_retries=5, retry_backoff_seconds=0)

        with pytest.raises(RuntimeError):
            store.allocate("POLICY", 2025)

        assert calls.count("execute") == 1
        assert calls == ["execute", "rollback", "close"]
