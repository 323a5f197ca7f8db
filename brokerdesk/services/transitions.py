"""
Transition tables for the RFQ, broking slip and endorsement state machines.

Each operation consults its table once through ``check_transition``.
"""

from typing import Dict, Tuple, Optional

from brokerdesk.errors import InvalidTransition, StatusUnchanged, ValidationError

RFQ_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "Draft": ("Quoted", "Lost"),
    "Quoted": ("Won", "Lost"),
    "Won": ("ConvertedToPolicy",),
    "Lost": (),
    "ConvertedToPolicy": (),
}

# None is a policy whose slip has not been generated yet
SLIP_TRANSITIONS: Dict[Optional[str], Tuple[str, ...]] = {
    None: ("draft",),
    "draft": ("submitted",),
    "submitted": ("bound", "declined"),
    "bound": (),
    "declined": (),
}

ENDORSEMENT_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "Draft": ("Approved",),
    "Approved": ("Issued",),
    "Issued": (),
}


def terminal_states(table: Dict) -> Tuple:
    return tuple(state for state, targets in table.items() if not targets)


def check_transition(table: Dict, entity: str, current: Optional[str], target: str):
    """
    Validate a single transition against a table.

    Raises:
        ValidationError: target is not a known state
        StatusUnchanged: target equals current
        InvalidTransition: target is not reachable from current
    """
    if target not in table:
        raise ValidationError(
            f"Status must be one of: {', '.join(s for s in table if s)}",
            entity=entity,
            status=target,
        )
    if current == target:
        raise StatusUnchanged(
            f"{entity} is already in status {target}",
            entity=entity,
            current_status=current,
        )
    allowed = table.get(current, ())
    if target not in allowed:
        raise InvalidTransition(
            f"Invalid status transition from {current} to {target}",
            entity=entity,
            current_status=current,
            target_status=target,
            allowed=list(allowed),
        )
