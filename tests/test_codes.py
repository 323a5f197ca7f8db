"""
Tests for business code formatting and allocation.
"""

import pytest
from sqlmodel import Session

from brokerdesk.errors import ValidationError
from brokerdesk.models import SequenceCounter
from brokerdesk.services.codes import (
    CodeAllocator, format_code, normalize_client_type, SCOPE_POLICY, SCOPE_SLIP
)


def _seed_counter(engine, scope, year, value, subtype=""):
    with Session(engine) as session:
        session.add(SequenceCounter(scope=scope, year=year, subtype=subtype, last_allocated=value))
        session.commit()


class TestFormatCode:
    """Pure formatting."""

    def test_plain_code(self):
        assert format_code("MEIBL/PL", 2025, 42, 5) == "MEIBL/PL/2025/00042"

    def test_typed_code(self):
        assert format_code("MEIBL/CL", 2025, 3, 5, "CORP") == "MEIBL/CL/2025/CORP/00003"

    def test_slip_width(self):
        assert format_code("BRK", 2025, 7, 6) == "BRK/2025/000007"

    def test_sequence_wider_than_pad_is_not_truncated(self):
        assert format_code("END", 2025, 123456, 5) == "END/2025/123456"


class TestClientTypes:
    """Client type aliases map onto the IND/CORP tags."""

    @pytest.mark.parametrize("value,expected", [
        ("Individual", "IND"),
        ("individual", "IND"),
        ("IND", "IND"),
        ("Corporate", "CORP"),
        ("corporate", "CORP"),
        ("CORP", "CORP"),
    ])
    def test_aliases(self, value, expected, allocator):
        assert normalize_client_type(value, allocator.settings["client_types"]) == expected

    def test_none_means_untyped(self, allocator):
        assert normalize_client_type(None, allocator.settings["client_types"]) is None

    def test_unknown_type_rejected(self, allocator):
        with pytest.raises(ValidationError) as exc_info:
            allocator.next_client_code("Partnership")
        assert exc_info.value.details["value"] == "Partnership"


class TestCodeAllocator:
    """Allocation through the sequence store."""

    def test_policy_number_after_counter_at_41(self, allocator, engine):
        _seed_counter(engine, SCOPE_POLICY, 2025, 41)
        assert allocator.next_policy_number() == "MEIBL/PL/2025/00042"

    def test_seventh_slip_number(self, allocator, engine):
        _seed_counter(engine, SCOPE_SLIP, 2025, 6)
        assert allocator.next_slip_number() == "BRK/2025/000007"

    def test_slip_number_pads_to_six_digits(self, allocator):
        assert allocator.next_slip_number().endswith("/000001")

    def test_endorsement_number(self, allocator):
        assert allocator.next_endorsement_number() == "END/2025/00001"
        assert allocator.next_endorsement_number() == "END/2025/00002"

    def test_client_types_number_independently(self, allocator):
        assert allocator.next_client_code("Individual") == "MEIBL/CL/2025/IND/00001"
        assert allocator.next_client_code("individual") == "MEIBL/CL/2025/IND/00002"
        assert allocator.next_client_code("Corporate") == "MEIBL/CL/2025/CORP/00001"
        assert allocator.next_client_code() == "MEIBL/CL/2025/00001"

    def test_explicit_year(self, allocator):
        assert allocator.next_policy_number(year=2026) == "MEIBL/PL/2026/00001"
        assert allocator.next_policy_number() == "MEIBL/PL/2025/00001"

    def test_year_comes_from_clock(self, store):
        from datetime import datetime
        allocator = CodeAllocator(store, clock=lambda: datetime(2031, 1, 1))
        assert allocator.next_policy_number() == "MEIBL/PL/2031/00001"
