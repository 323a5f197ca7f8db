"""
Policy workflow: direct creation, the broking slip lifecycle, renewal and expiry.
"""

from typing import Dict, Any, Optional, Callable, List
from datetime import datetime, date, timedelta
import logging

from sqlalchemy import or_
from sqlmodel import Session

from brokerdesk.db import session_scope
from brokerdesk.models import Policy
from brokerdesk.errors import (
    ValidationError, NotFound, AlreadyRenewed, SlipAlreadyGenerated, SlipNotGenerated,
    SlipExpired, BelowMinimumPremium, InvalidTransition, Conflict
)
from brokerdesk.services.codes import CodeAllocator
from brokerdesk.services.entities import load_for_update, compare_and_set
from brokerdesk.services.transitions import SLIP_TRANSITIONS, check_transition
from brokerdesk.services.authorization import can_override_minimum, require_override_authority
from brokerdesk.services.premium import check_minimum_premium
from brokerdesk.services.rates import get_rate_config
from brokerdesk.cache import config_cache

logger = logging.getLogger("brokerdesk")

SLIP_RESPONSES = ("bound", "declined")
EXPIRABLE_STATUSES = ("active", "pending")


def expiry_urgency(days_until_expiry: int) -> str:
    if days_until_expiry <= 7:
        return "critical"
    if days_until_expiry <= 30:
        return "high"
    return "medium"


def policy_summary(policy: Policy) -> Dict[str, Any]:
    return {
        "id": policy.id,
        "policy_number": policy.policy_number,
        "client_id": policy.client_id,
        "insurer_id": policy.insurer_id,
        "gross_premium": policy.gross_premium,
        "policy_end_date": policy.policy_end_date.isoformat(),
        "status": policy.status,
    }


class PolicyWorkflow:
    """Policy-level transitions. Every write runs in one transaction per call."""

    def __init__(self, allocator: CodeAllocator, clock: Callable[[], datetime] = datetime.utcnow):
        self.allocator = allocator
        self._clock = clock
        self.slip_settings = config_cache.get_section("slips")

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_policy(
        self,
        db_session: Session,
        auth: Any,
        client_id: int,
        insurer_id: int,
        lob_id: int,
        sum_insured: float,
        gross_premium: float,
        policy_start_date: date,
        policy_end_date: date,
        sub_lob_id: Optional[int] = None,
        currency: str = "NGN",
        override_minimum: bool = False,
    ) -> Policy:
        """
        Create a draft policy after the minimum-premium check.

        Raises:
            ValidationError: Dates out of order or negative amounts
            BelowMinimumPremium: Premium under the floor and no override requested
            InsufficientOverrideAuthority: Override requested without authority
        """
        if policy_start_date >= policy_end_date:
            raise ValidationError(
                "Policy start date must be before end date",
                policy_start_date=policy_start_date.isoformat(),
                policy_end_date=policy_end_date.isoformat(),
            )
        if sum_insured < 0 or gross_premium < 0:
            raise ValidationError("Sum insured and gross premium must be non-negative")

        config = get_rate_config(db_session, lob_id, sub_lob_id)
        check = check_minimum_premium(gross_premium, config["min_premium"])
        if not check["valid"]:
            if not override_minimum:
                raise BelowMinimumPremium(
                    resulting_premium=gross_premium,
                    min_premium=check["min_premium"],
                    shortfall=check["shortfall"],
                    can_override=can_override_minimum(auth, check["shortfall"]),
                )
            require_override_authority(auth, check["shortfall"], check["min_premium"], gross_premium)
            logger.info(
                f"Minimum premium overridden | user_id={auth.user_id} | shortfall={check['shortfall']}"
            )

        policy_number = self.allocator.next_policy_number()
        now = self._clock()
        policy = Policy(
            policy_number=policy_number,
            client_id=client_id,
            insurer_id=insurer_id,
            lob_id=lob_id,
            sub_lob_id=sub_lob_id,
            sum_insured=sum_insured,
            gross_premium=gross_premium,
            currency=currency,
            policy_start_date=policy_start_date,
            policy_end_date=policy_end_date,
            status="draft",
            created_by=auth.user_id,
            created_at=now,
            updated_at=now,
        )
        with session_scope(db_session):
            db_session.add(policy)
        db_session.refresh(policy)

        logger.info(f"Policy created | policy_id={policy.id} | policy_number={policy_number}")
        return policy

    def get_policy(self, db_session: Session, policy_id: int) -> Policy:
        policy = db_session.query(Policy).filter(Policy.id == policy_id).first()
        if not policy:
            raise NotFound("Policy not found", entity="Policy", id=policy_id)
        return policy

    # ------------------------------------------------------------------
    # Broking slip
    # ------------------------------------------------------------------

    def generate_slip(self, db_session: Session, policy_id: int) -> Policy:
        """
        Allocate a slip number and open the slip in draft.

        Raises:
            SlipAlreadyGenerated: The policy already has a slip number, or a
                concurrent call generated one first
        """
        with session_scope(db_session):
            policy = load_for_update(db_session, Policy, policy_id, "Policy")
            if policy.slip_number:
                raise SlipAlreadyGenerated(policy_id=policy_id, slip_number=policy.slip_number)

            slip_number = self.allocator.next_slip_number()
            now = self._clock()
            try:
                compare_and_set(db_session, policy, "slip_number", None, {
                    "slip_number": slip_number,
                    "slip_status": "draft",
                    "slip_generated_at": now,
                    "slip_valid_until": now + timedelta(days=int(self.slip_settings.get("validity_days", 30))),
                    "updated_at": now,
                }, "Policy")
            except Conflict as exc:
                # Lost the race to a concurrent slip generation
                raise SlipAlreadyGenerated(policy_id=policy_id) from exc

        logger.info(f"Broking slip generated | policy_id={policy_id} | slip_number={slip_number}")
        return policy

    def submit_slip(self, db_session: Session, policy_id: int, insurer_id: Optional[int] = None) -> Policy:
        """
        Submit a draft slip to the insurer, optionally switching insurer.

        Raises:
            SlipNotGenerated: No slip yet
            InvalidTransition: Slip already submitted, bound or declined
            SlipExpired: Validity window has passed
        """
        with session_scope(db_session):
            policy = load_for_update(db_session, Policy, policy_id, "Policy")
            if not policy.slip_number:
                raise SlipNotGenerated(policy_id=policy_id)

            current = policy.slip_status
            check_transition(SLIP_TRANSITIONS, "Broking slip", current, "submitted")

            now = self._clock()
            if policy.slip_valid_until and policy.slip_valid_until < now:
                raise SlipExpired(
                    policy_id=policy_id,
                    slip_number=policy.slip_number,
                    slip_valid_until=policy.slip_valid_until.isoformat(),
                )

            values = {"slip_status": "submitted", "submitted_to_insurer_at": now, "updated_at": now}
            if insurer_id is not None:
                values["insurer_id"] = insurer_id
            compare_and_set(db_session, policy, "slip_status", current, values, "Policy")

        logger.info(f"Broking slip submitted | policy_id={policy_id} | insurer_id={policy.insurer_id}")
        return policy

    def record_slip_response(
        self,
        db_session: Session,
        policy_id: int,
        response: str,
        response_notes: Optional[str] = None,
        confirmed_gross_premium: Optional[float] = None,
        confirmed_sum_insured: Optional[float] = None,
    ) -> Policy:
        """
        Record the insurer's answer to a submitted slip.

        A bound slip activates the policy and may overwrite premium and
        sum insured with the insurer's confirmed figures.
        """
        if response not in SLIP_RESPONSES:
            raise ValidationError("Response must be 'bound' or 'declined'", field="response", value=response)

        with session_scope(db_session):
            policy = load_for_update(db_session, Policy, policy_id, "Policy")
            if not policy.slip_number:
                raise SlipNotGenerated(policy_id=policy_id)

            current = policy.slip_status
            if current != "submitted":
                raise InvalidTransition(
                    f"Cannot record response - slip status is '{current}'. Slip must be submitted first.",
                    entity="Broking slip",
                    current_status=current,
                    target_status=response,
                    allowed=list(SLIP_TRANSITIONS.get(current, ())),
                )
            check_transition(SLIP_TRANSITIONS, "Broking slip", current, response)

            now = self._clock()
            values: Dict[str, Any] = {
                "slip_status": response,
                "insurer_response_at": now,
                "insurer_response_notes": response_notes,
                "updated_at": now,
            }
            if response == "bound":
                values["status"] = "active"
                values["confirmation_date"] = now
                if confirmed_gross_premium is not None:
                    values["gross_premium"] = confirmed_gross_premium
                if confirmed_sum_insured is not None:
                    values["sum_insured"] = confirmed_sum_insured
            compare_and_set(db_session, policy, "slip_status", current, values, "Policy")

        logger.info(f"Insurer response recorded | policy_id={policy_id} | response={response}")
        return policy

    # ------------------------------------------------------------------
    # Renewal
    # ------------------------------------------------------------------

    def renew_policy(
        self,
        db_session: Session,
        policy_id: int,
        policy_end_date: date,
        policy_start_date: Optional[date] = None,
        sum_insured: Optional[float] = None,
        gross_premium: Optional[float] = None,
        adjustment_percent: Optional[float] = None,
        auth: Any = None,
    ) -> Dict[str, Any]:
        """
        Create the renewal of a policy and link both directions atomically.

        The adjustment percentage is applied as a plain multiplier on the
        prior premium and wins over an explicit gross premium.

        Raises:
            AlreadyRenewed: The policy already links to a renewal
            ValidationError: Renewal dates out of order
        """
        with session_scope(db_session):
            original = load_for_update(db_session, Policy, policy_id, "Policy")
            if original.renewed_to_policy_id is not None:
                raise AlreadyRenewed(policy_id=policy_id, renewed_to_policy_id=original.renewed_to_policy_id)

            start = policy_start_date or original.policy_end_date
            if start >= policy_end_date:
                raise ValidationError(
                    "Renewal start date must be before end date",
                    policy_start_date=start.isoformat(),
                    policy_end_date=policy_end_date.isoformat(),
                )

            new_sum_insured = sum_insured if sum_insured is not None else original.sum_insured
            if adjustment_percent is not None:
                new_premium = original.gross_premium * (1 + adjustment_percent / 100)
            elif gross_premium is not None:
                new_premium = gross_premium
            else:
                new_premium = original.gross_premium

            policy_number = self.allocator.next_policy_number()
            now = self._clock()
            renewal = Policy(
                policy_number=policy_number,
                client_id=original.client_id,
                insurer_id=original.insurer_id,
                lob_id=original.lob_id,
                sub_lob_id=original.sub_lob_id,
                sum_insured=new_sum_insured,
                gross_premium=new_premium,
                currency=original.currency,
                policy_start_date=start,
                policy_end_date=policy_end_date,
                status="active",
                is_renewal=True,
                renewed_from_policy_id=original.id,
                created_by=auth.user_id if auth is not None else original.created_by,
                created_at=now,
                updated_at=now,
            )
            db_session.add(renewal)
            db_session.flush()

            try:
                compare_and_set(db_session, original, "renewed_to_policy_id", None, {
                    "renewed_to_policy_id": renewal.id,
                    "updated_at": now,
                }, "Policy")
            except Conflict as exc:
                # Lost the race to a concurrent renewal
                raise AlreadyRenewed(policy_id=policy_id) from exc

        db_session.refresh(renewal)
        adjustments = {
            "original_premium": original.gross_premium,
            "new_premium": new_premium,
            "premium_change": new_premium - original.gross_premium,
            "original_sum_insured": original.sum_insured,
            "new_sum_insured": new_sum_insured,
            "sum_insured_change": new_sum_insured - original.sum_insured,
            "adjustment_percent": adjustment_percent,
        }
        logger.info(
            f"Policy renewed | policy_id={policy_id} | renewal_id={renewal.id} | "
            f"policy_number={policy_number}"
        )
        return {"original_policy_id": policy_id, "renewal_policy": renewal, "adjustments": adjustments}

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def _expiry_filters(self, today: date) -> List:
        return [
            Policy.policy_end_date <= today,
            or_(Policy.status.in_(EXPIRABLE_STATUSES), Policy.status.is_(None)),
            or_(Policy.auto_expired == False, Policy.auto_expired.is_(None)),  # noqa: E712
        ]

    def auto_expire_policies(self, db_session: Session, today: Optional[date] = None, dry_run: bool = False) -> Dict[str, Any]:
        """
        Expire every policy past its end date that is still live.

        Re-running on the same day touches nothing new. Cancelled policies
        are never selected. Dry run reports candidates without writing.

        Returns:
            Report with expired count, affected policies, dry_run flag and timestamp
        """
        now = self._clock()
        today = today or now.date()
        filters = self._expiry_filters(today)

        candidates = db_session.query(Policy).filter(*filters).order_by(Policy.policy_end_date).all()
        policies = [
            {**policy_summary(p), "previous_status": p.status}
            for p in candidates
        ]

        if dry_run:
            logger.info(f"Auto-expiry dry run | candidates={len(policies)}")
            return {
                "expired": len(policies),
                "policies": policies,
                "dry_run": True,
                "timestamp": now,
                "message": f"Would expire {len(policies)} policies (dry run mode)",
            }

        with session_scope(db_session):
            expired = db_session.query(Policy).filter(*filters).update({
                "status": "expired",
                "auto_expired": True,
                "last_status_check": now,
                "updated_at": now,
            }, synchronize_session=False)

        db_session.expire_all()
        logger.info(f"Auto-expiry complete | expired={expired}")
        return {
            "expired": expired,
            "policies": policies,
            "dry_run": False,
            "timestamp": now,
            "message": f"Successfully expired {expired} policies",
        }

    def list_expiring_policies(
        self,
        db_session: Session,
        days: int = 60,
        status: str = "active",
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Policies ending within ``days`` that have not been renewed, with urgency."""
        if days < 0:
            raise ValidationError("days must be non-negative", field="days", value=days)
        today = today or self._clock().date()
        horizon = today + timedelta(days=days)

        rows = db_session.query(Policy).filter(
            Policy.policy_end_date >= today,
            Policy.policy_end_date <= horizon,
            Policy.status == status,
            Policy.renewed_to_policy_id.is_(None)
        ).order_by(Policy.policy_end_date).all()

        policies = []
        summary = {"total": 0, "critical": 0, "high": 0, "medium": 0}
        for policy in rows:
            days_left = (policy.policy_end_date - today).days
            urgency = expiry_urgency(days_left)
            policies.append({**policy_summary(policy), "days_until_expiry": days_left, "urgency": urgency})
            summary[urgency] += 1
            summary["total"] += 1

        return {"policies": policies, "summary": summary}
