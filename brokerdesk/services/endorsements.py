"""
Endorsement workflow: Draft -> Approved (L2) -> Issued (L3).
"""

from typing import Dict, Any, Optional, Callable, Mapping
from datetime import datetime, date
import json
import logging

from sqlmodel import Session

from brokerdesk.db import session_scope
from brokerdesk.models import Endorsement, Policy
from brokerdesk.errors import ValidationError, NotFound, BelowMinimumPremium
from brokerdesk.services.codes import CodeAllocator
from brokerdesk.services.entities import load_for_update, compare_and_set
from brokerdesk.services.transitions import ENDORSEMENT_TRANSITIONS, check_transition
from brokerdesk.services.authorization import require_approval_level, require_role, can_override_minimum
from brokerdesk.services.premium import premium_breakdown, check_minimum_premium
from brokerdesk.services.rates import get_rate_config
from brokerdesk.cache import config_cache

logger = logging.getLogger("brokerdesk")


def _check_pct(name: str, value: float):
    if value is None or not 0 <= value <= 100:
        raise ValidationError(f"{name} must be between 0 and 100", field=name, value=value)


class EndorsementWorkflow:
    """Creation and the two approval-gated transitions of an endorsement."""

    def __init__(self, allocator: CodeAllocator, clock: Callable[[], datetime] = datetime.utcnow):
        self.allocator = allocator
        self._clock = clock
        self.settings = config_cache.get_section("authorization")

    def create_endorsement(
        self,
        db_session: Session,
        auth: Any,
        policy_id: int,
        type: str,
        effective_date: date,
        description: str,
        sum_insured_delta: float = 0,
        gross_premium_delta: float = 0,
        brokerage_pct: Optional[float] = None,
        vat_pct: Optional[float] = None,
        levies: Optional[Mapping[str, float]] = None,
    ) -> Endorsement:
        """
        Prepare a draft endorsement with its brokerage/VAT figures.

        Brokerage defaults to the resolved line/sub-line rate. Amounts are
        computed on the premium delta.

        Raises:
            InsufficientPermissions: Role may not prepare endorsements
            ValidationError: Missing text fields or percentages outside [0, 100]
            NotFound: Policy missing
        """
        require_role(auth, self.settings.get("endorsement_roles", ["Underwriter", "Admin"]), "create_endorsement")

        if not type or not str(type).strip():
            raise ValidationError("Endorsement type is required", field="type")
        if not description or not str(description).strip():
            raise ValidationError("Description is required", field="description")

        policy = db_session.query(Policy).filter(Policy.id == policy_id).first()
        if not policy:
            raise NotFound("Policy not found", entity="Policy", id=policy_id)

        if brokerage_pct is None:
            brokerage_pct = get_rate_config(db_session, policy.lob_id, policy.sub_lob_id)["default_brokerage_pct"]
        if vat_pct is None:
            vat_pct = config_cache.get_section("financials").get("default_vat_pct", 7.5)
        _check_pct("brokerage_pct", brokerage_pct)
        _check_pct("vat_pct", vat_pct)

        breakdown = premium_breakdown(gross_premium_delta, brokerage_pct, vat_pct, 0, levies)

        endorsement_number = self.allocator.next_endorsement_number()
        now = self._clock()
        endorsement = Endorsement(
            endorsement_number=endorsement_number,
            policy_id=policy_id,
            type=type,
            effective_date=effective_date,
            description=description,
            sum_insured_delta=sum_insured_delta,
            gross_premium_delta=gross_premium_delta,
            brokerage_pct=brokerage_pct,
            vat_pct=vat_pct,
            levies_json=json.dumps(dict(levies)) if levies else None,
            brokerage_amount=breakdown["brokerage_amount"],
            vat_amount=breakdown["vat_on_brokerage"],
            net_amount_due=breakdown["net_amount_due"],
            status="Draft",
            prepared_by=auth.user_id,
            created_at=now,
            updated_at=now,
        )
        with session_scope(db_session):
            db_session.add(endorsement)
        db_session.refresh(endorsement)

        logger.info(
            f"Endorsement created | endorsement_id={endorsement.id} | "
            f"endorsement_number={endorsement_number} | policy_id={policy_id}"
        )
        return endorsement

    def approve(self, db_session: Session, endorsement_id: int, auth: Any) -> Endorsement:
        """
        Approve a draft endorsement. Requires the configured approve level (L2).

        Raises:
            InsufficientApprovalLevel: Level too low; nothing is written
            InvalidTransition / StatusUnchanged: Not in Draft
            Conflict: A concurrent transition won
        """
        require_approval_level(auth, self.settings.get("approve_level", "L2"), "approve_endorsement")

        with session_scope(db_session):
            endorsement = load_for_update(db_session, Endorsement, endorsement_id, "Endorsement")
            current = endorsement.status
            check_transition(ENDORSEMENT_TRANSITIONS, "Endorsement", current, "Approved")
            compare_and_set(db_session, endorsement, "status", current, {
                "status": "Approved",
                "authorized_by": auth.user_id,
                "updated_at": self._clock(),
            }, "Endorsement")

        logger.info(f"Endorsement approved | endorsement_id={endorsement_id} | user_id={auth.user_id}")
        return endorsement

    def issue(self, db_session: Session, endorsement_id: int, auth: Any) -> Dict[str, Any]:
        """
        Issue an approved endorsement. Requires the configured issue level (L3).

        The resulting policy premium (current premium plus delta) must meet
        the line/sub-line minimum unless the user may override the shortfall.
        The policy's stored premium is not changed.

        Returns:
            Dict with endorsement, resulting_premium, min_premium and override_applied
        """
        require_approval_level(auth, self.settings.get("issue_level", "L3"), "issue_endorsement")

        with session_scope(db_session):
            endorsement = load_for_update(db_session, Endorsement, endorsement_id, "Endorsement")
            current = endorsement.status
            check_transition(ENDORSEMENT_TRANSITIONS, "Endorsement", current, "Issued")

            policy = db_session.query(Policy).filter(Policy.id == endorsement.policy_id).first()
            if not policy:
                raise NotFound("Policy not found", entity="Policy", id=endorsement.policy_id)

            resulting_premium = policy.gross_premium + endorsement.gross_premium_delta
            min_premium = get_rate_config(db_session, policy.lob_id, policy.sub_lob_id)["min_premium"]
            check = check_minimum_premium(resulting_premium, min_premium)

            override_applied = False
            if not check["valid"]:
                shortfall = check["shortfall"]
                if not can_override_minimum(auth, shortfall, self.settings.get("override_role", "Admin")):
                    logger.info(
                        f"Endorsement below minimum premium | endorsement_id={endorsement_id} | "
                        f"shortfall={shortfall}"
                    )
                    raise BelowMinimumPremium(
                        resulting_premium=resulting_premium,
                        min_premium=min_premium,
                        shortfall=shortfall,
                        can_override=False,
                        user_max_override=auth.max_override_limit or 0,
                    )
                override_applied = True

            compare_and_set(db_session, endorsement, "status", current, {
                "status": "Issued",
                "updated_at": self._clock(),
            }, "Endorsement")

        logger.info(
            f"Endorsement issued | endorsement_id={endorsement_id} | user_id={auth.user_id} | "
            f"override_applied={override_applied}"
        )
        return {
            "endorsement": endorsement,
            "resulting_premium": resulting_premium,
            "min_premium": min_premium,
            "override_applied": override_applied,
        }

    def get_endorsement(self, db_session: Session, endorsement_id: int) -> Endorsement:
        endorsement = db_session.query(Endorsement).filter(Endorsement.id == endorsement_id).first()
        if not endorsement:
            raise NotFound("Endorsement not found", entity="Endorsement", id=endorsement_id)
        return endorsement
