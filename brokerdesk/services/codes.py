"""
Code allocator: formats sequence values into human-readable business codes.

Formats:
    MEIBL/CL/YYYY/NNNNN        plain client code
    MEIBL/CL/YYYY/TYPE/NNNNN   typed client code (IND or CORP)
    MEIBL/PL/YYYY/NNNNN        policy number
    END/YYYY/NNNNN             endorsement number
    BRK/YYYY/NNNNNN            broking slip number
"""

from typing import Optional, Dict, Any, Callable
from datetime import datetime

from brokerdesk.services.sequences import SequenceStore
from brokerdesk.errors import ValidationError
from brokerdesk.cache import config_cache

SCOPE_CLIENT = "CLIENT"
SCOPE_POLICY = "POLICY"
SCOPE_SLIP = "SLIP"
SCOPE_ENDORSEMENT = "ENDORSEMENT"


def format_code(prefix: str, year: int, seq: int, width: int, type_tag: Optional[str] = None) -> str:
    """Join prefix, year, optional type tag and zero-padded sequence with slashes."""
    parts = [prefix, f"{year:04d}"]
    if type_tag:
        parts.append(type_tag)
    parts.append(str(seq).zfill(width))
    return "/".join(parts)


def normalize_client_type(client_type: Optional[str], client_types: Dict[str, str]) -> Optional[str]:
    """
    Map a client type to its code tag.

    Accepts 'Individual', 'individual', 'IND', 'Corporate', 'corporate' and
    'CORP'. None means an untyped client code.
    """
    if client_type is None:
        return None
    tag = client_types.get(str(client_type).strip().lower())
    if not tag:
        raise ValidationError(
            "Client type must be 'Individual' or 'Corporate'",
            field="client_type",
            value=client_type,
        )
    return tag


class CodeAllocator:
    """One call-through to the sequence store plus formatting, nothing more."""

    def __init__(
        self,
        sequence_store: SequenceStore,
        settings: Optional[Dict[str, Any]] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.sequence_store = sequence_store
        self.settings = settings or config_cache.get_section("codes")
        self._clock = clock

    def _year(self, year: Optional[int]) -> int:
        return year if year is not None else self._clock().year

    def next_client_code(self, client_type: Optional[str] = None, year: Optional[int] = None) -> str:
        type_tag = normalize_client_type(client_type, self.settings["client_types"])
        year = self._year(year)
        seq = self.sequence_store.allocate(SCOPE_CLIENT, year, type_tag)
        return format_code(self.settings["client_prefix"], year, seq, self.settings["sequence_width"], type_tag)

    def next_policy_number(self, year: Optional[int] = None) -> str:
        year = self._year(year)
        seq = self.sequence_store.allocate(SCOPE_POLICY, year)
        return format_code(self.settings["policy_prefix"], year, seq, self.settings["sequence_width"])

    def next_slip_number(self, year: Optional[int] = None) -> str:
        year = self._year(year)
        seq = self.sequence_store.allocate(SCOPE_SLIP, year)
        return format_code(self.settings["slip_prefix"], year, seq, self.settings["slip_sequence_width"])

    def next_endorsement_number(self, year: Optional[int] = None) -> str:
        year = self._year(year)
        seq = self.sequence_store.allocate(SCOPE_ENDORSEMENT, year)
        return format_code(self.settings["endorsement_prefix"], year, seq, self.settings["sequence_width"])
