"""
Read-only lookup of line-of-business rate configuration.
"""

from typing import Dict, Any, Optional

from sqlmodel import Session

from brokerdesk.models import LineOfBusiness, SubLineOfBusiness
from brokerdesk.errors import NotFound, ValidationError
from brokerdesk.services.premium import resolve_rate_config, compute_premium


def get_rate_config(db_session: Session, lob_id: int, sub_lob_id: Optional[int] = None) -> Dict[str, Any]:
    """
    Effective rate configuration for a line and optional sub-line.

    Raises:
        NotFound: Line or sub-line missing
        ValidationError: Sub-line belongs to another line
    """
    lob = db_session.query(LineOfBusiness).filter(LineOfBusiness.id == lob_id).first()
    if not lob:
        raise NotFound("LOB not found", entity="LOB", id=lob_id)

    sub_lob = None
    if sub_lob_id is not None:
        sub_lob = db_session.query(SubLineOfBusiness).filter(SubLineOfBusiness.id == sub_lob_id).first()
        if not sub_lob:
            raise NotFound("Sub-LOB not found", entity="Sub-LOB", id=sub_lob_id)
        if sub_lob.lob_id != lob.id:
            raise ValidationError("Sub-LOB does not belong to LOB", lob_id=lob_id, sub_lob_id=sub_lob_id)

    return resolve_rate_config(lob, sub_lob)


def quote_premium(db_session: Session, lob_id: int, sum_insured: float, sub_lob_id: Optional[int] = None) -> Dict[str, Any]:
    """Premium for a sum insured under the resolved line/sub-line configuration."""
    config = get_rate_config(db_session, lob_id, sub_lob_id)
    return compute_premium(
        sum_insured,
        config["rate_basis"],
        config["rating_inputs"],
        config["min_premium"],
    )
