"""
Shared fixtures: an isolated SQLite database file per test, seeded with the
line-of-business catalogue, plus workflows wired to a fixed clock.
"""

import pytest
from datetime import datetime, date
from sqlmodel import Session

from brokerdesk.db import build_engine, initialize_database, session_factory
from brokerdesk.models import Rfq, RfqInsurerQuote, Policy
from brokerdesk.schemas import AuthContext
from brokerdesk.services.sequences import SequenceStore
from brokerdesk.services.codes import CodeAllocator
from brokerdesk.services.rfq import RfqWorkflow
from brokerdesk.services.policy_workflow import PolicyWorkflow
from brokerdesk.services.endorsements import EndorsementWorkflow

FIXED_NOW = datetime(2025, 3, 15, 10, 0, 0)
TODAY = FIXED_NOW.date()


def fixed_clock():
    return FIXED_NOW


@pytest.fixture
def engine(tmp_path):
    db_engine = build_engine(f"sqlite:///{tmp_path / 'brokerdesk.db'}")
    initialize_database(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as db_session:
        yield db_session


@pytest.fixture
def store(engine):
    return SequenceStore(session_factory(engine), retry_backoff_seconds=0)


@pytest.fixture
def allocator(store):
    return CodeAllocator(store, clock=fixed_clock)


@pytest.fixture
def rfq_workflow(allocator):
    return RfqWorkflow(allocator, clock=fixed_clock)


@pytest.fixture
def policy_workflow(allocator):
    return PolicyWorkflow(allocator, clock=fixed_clock)


@pytest.fixture
def endorsement_workflow(allocator):
    return EndorsementWorkflow(allocator, clock=fixed_clock)


# ============================================================================
# Acting users
# ============================================================================

@pytest.fixture
def underwriter():
    return AuthContext(user_id=10, role="Underwriter", approval_level="L1", max_override_limit=0)


@pytest.fixture
def manager():
    return AuthContext(user_id=20, role="Manager", approval_level="L2", max_override_limit=0)


@pytest.fixture
def director():
    return AuthContext(user_id=30, role="Underwriter", approval_level="L3", max_override_limit=800)


@pytest.fixture
def admin():
    return AuthContext(user_id=40, role="Admin", approval_level="L3", max_override_limit=100000)


# ============================================================================
# Entity factories
# ============================================================================

@pytest.fixture
def make_rfq(session):
    def _make(status="Quoted", lob_id=2, sub_lob_id=None, sum_insured=2000000.0, premium=100000.0):
        rfq = Rfq(
            client_id=7,
            primary_lob_id=lob_id,
            sub_lob_id=sub_lob_id,
            expected_sum_insured=sum_insured,
            expected_gross_premium=premium,
            status=status,
            created_by=10,
        )
        session.add(rfq)
        session.commit()
        session.refresh(rfq)
        return rfq
    return _make


@pytest.fixture
def make_quote(session):
    def _make(rfq_id, insurer_id=101, rate=5.0, premium=100000.0):
        quote = RfqInsurerQuote(
            rfq_id=rfq_id,
            insurer_id=insurer_id,
            offered_rate_pct=rate,
            offered_gross_premium=premium,
        )
        session.add(quote)
        session.commit()
        session.refresh(quote)
        return quote
    return _make


@pytest.fixture
def make_policy(session):
    counter = {"n": 0}

    def _make(
        status="active",
        lob_id=2,
        sub_lob_id=None,
        gross_premium=100000.0,
        sum_insured=2000000.0,
        start=date(2024, 3, 1),
        end=date(2025, 3, 1),
        **extra
    ):
        counter["n"] += 1
        policy = Policy(
            policy_number=f"TEST/PL/{counter['n']:05d}",
            client_id=7,
            insurer_id=101,
            lob_id=lob_id,
            sub_lob_id=sub_lob_id,
            sum_insured=sum_insured,
            gross_premium=gross_premium,
            policy_start_date=start,
            policy_end_date=end,
            status=status,
            created_by=10,
            **extra
        )
        session.add(policy)
        session.commit()
        if status is None:
            # The column default replaces None on insert; legacy rows carry NULL
            session.query(Policy).filter(Policy.id == policy.id).update(
                {"status": None}, synchronize_session=False
            )
            session.commit()
        session.refresh(policy)
        return policy
    return _make
