"""
Authorization policy for gated transitions.

Every approval-level and override check goes through these functions so the
rule lives in one place.
"""

from typing import Any, Dict, Optional, Union
import logging

from brokerdesk.errors import (
    InsufficientApprovalLevel, InsufficientOverrideAuthority, InsufficientPermissions, ValidationError
)
from brokerdesk.cache import config_cache

logger = logging.getLogger("brokerdesk")

APPROVAL_LEVELS = {"L1": 1, "L2": 2, "L3": 3}


def approval_level_rank(level: Union[str, int, None]) -> int:
    """Numeric rank of an approval level (L1=1, L2=2, L3=3). Missing means L1."""
    if level is None or level == "":
        return APPROVAL_LEVELS["L1"]
    if isinstance(level, int):
        rank = level
    else:
        rank = APPROVAL_LEVELS.get(str(level).strip().upper(), 0)
    if rank not in APPROVAL_LEVELS.values():
        raise ValidationError("Approval level must be one of L1, L2, L3", field="approval_level", value=level)
    return rank


def is_level_sufficient(required_level: Union[str, int], actual_level: Union[str, int, None]) -> bool:
    """allow/deny: the acting level must reach the required level."""
    return approval_level_rank(actual_level) >= approval_level_rank(required_level)


def require_approval_level(auth: Any, required_level: Union[str, int], action: str):
    """
    Raise InsufficientApprovalLevel unless the acting user reaches required_level.

    Args:
        auth: Authorization context (user_id, role, approval_level, max_override_limit)
        required_level: Level the action needs
        action: Action name used in the error payload
    """
    if is_level_sufficient(required_level, auth.approval_level):
        return
    logger.info(
        f"Approval level rejected | action={action} | user_id={auth.user_id} | "
        f"level={auth.approval_level} | required={required_level}"
    )
    raise InsufficientApprovalLevel(
        f"Insufficient approval level. {required_level} or higher required",
        action=action,
        required_level=required_level,
        actual_level=auth.approval_level,
    )


def require_role(auth: Any, allowed_roles, action: str):
    if auth.role in allowed_roles:
        return
    raise InsufficientPermissions(
        action=action,
        role=auth.role,
        allowed_roles=list(allowed_roles),
    )


def can_override_minimum(auth: Any, shortfall: float, override_role: Optional[str] = None) -> bool:
    """Only the top role tier with a large enough override limit may accept a shortfall."""
    if override_role is None:
        override_role = config_cache.get_section("authorization").get("override_role", "Admin")
    return auth.role == override_role and (auth.max_override_limit or 0) >= shortfall


def require_override_authority(auth: Any, shortfall: float, min_premium: float, premium: float) -> Dict[str, Any]:
    """Raise InsufficientOverrideAuthority unless the user may accept the shortfall."""
    override_role = config_cache.get_section("authorization").get("override_role", "Admin")
    if can_override_minimum(auth, shortfall, override_role):
        return {"overridden_by": auth.user_id, "shortfall": shortfall}
    raise InsufficientOverrideAuthority(
        premium=premium,
        min_premium=min_premium,
        shortfall=shortfall,
        required_role=override_role,
        role=auth.role,
        max_override_limit=auth.max_override_limit or 0,
    )
