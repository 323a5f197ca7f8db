"""
RFQ workflow: insurer quotes and the Draft -> Quoted -> Won -> ConvertedToPolicy machine.
"""

from typing import Dict, Any, Optional, Callable
from datetime import datetime, timedelta
import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from brokerdesk.db import session_scope
from brokerdesk.models import Rfq, RfqInsurerQuote, Policy
from brokerdesk.errors import ValidationError, InsurerNotQuoted, InvalidTransition, Conflict
from brokerdesk.services.codes import CodeAllocator
from brokerdesk.services.entities import load_for_update, compare_and_set
from brokerdesk.services.transitions import RFQ_TRANSITIONS, check_transition, terminal_states
from brokerdesk.cache import config_cache

logger = logging.getLogger("brokerdesk")

STATUSES_REQUIRING_INSURER = ("Won", "ConvertedToPolicy")


class RfqWorkflow:
    """Drives RFQ status changes and the conversion of a won RFQ into a policy."""

    def __init__(self, allocator: CodeAllocator, clock: Callable[[], datetime] = datetime.utcnow):
        self.allocator = allocator
        self._clock = clock
        self.settings = config_cache.get_section("policies")

    def record_insurer_quote(
        self,
        db_session: Session,
        rfq_id: int,
        insurer_id: int,
        offered_rate_pct: float,
        offered_gross_premium: float,
        notes: Optional[str] = None,
    ) -> RfqInsurerQuote:
        """
        Store an insurer's quote on an RFQ; a repeat quote from the same insurer replaces it.

        Raises:
            ValidationError: Rate outside [0, 100] or negative premium
            NotFound: RFQ missing
            InvalidTransition: RFQ already closed
            Conflict: A concurrent first quote from the same insurer won
        """
        if offered_rate_pct is None or not 0 <= offered_rate_pct <= 100:
            raise ValidationError("Offered rate must be between 0 and 100", field="offered_rate_pct")
        if offered_gross_premium is None or offered_gross_premium < 0:
            raise ValidationError("Offered gross premium must be non-negative", field="offered_gross_premium")

        now = self._clock()
        try:
            with session_scope(db_session):
                rfq = load_for_update(db_session, Rfq, rfq_id, "RFQ")
                if rfq.status in terminal_states(RFQ_TRANSITIONS):
                    raise InvalidTransition(
                        f"Cannot quote on an RFQ in status {rfq.status}",
                        entity="RFQ",
                        current_status=rfq.status,
                    )

                quote = db_session.query(RfqInsurerQuote).filter(
                    RfqInsurerQuote.rfq_id == rfq_id,
                    RfqInsurerQuote.insurer_id == insurer_id
                ).first()
                if quote is None:
                    quote = RfqInsurerQuote(rfq_id=rfq_id, insurer_id=insurer_id, created_at=now,
                                            offered_rate_pct=offered_rate_pct,
                                            offered_gross_premium=offered_gross_premium)
                    db_session.add(quote)
                quote.offered_rate_pct = offered_rate_pct
                quote.offered_gross_premium = offered_gross_premium
                quote.notes = notes
                quote.updated_at = now
        except IntegrityError as exc:
            # A concurrent first quote from the same insurer hit uq_rfq_insurer
            logger.warning(f"Concurrent insurer quote | rfq_id={rfq_id} | insurer_id={insurer_id}")
            raise Conflict(
                "Insurer quote was recorded concurrently",
                entity="RfqInsurerQuote",
                rfq_id=rfq_id,
                insurer_id=insurer_id,
            ) from exc

        db_session.refresh(quote)
        logger.info(f"Insurer quote recorded | rfq_id={rfq_id} | insurer_id={insurer_id}")
        return quote

    def change_status(
        self,
        db_session: Session,
        rfq_id: int,
        status: str,
        selected_insurer_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Move an RFQ to a new status.

        Won and ConvertedToPolicy need an insurer that has quoted on the RFQ.
        Conversion creates the policy and updates the RFQ in one transaction.

        Returns:
            Dict with the updated ``rfq`` and, on conversion, the new ``policy``
        """
        with session_scope(db_session):
            rfq = load_for_update(db_session, Rfq, rfq_id, "RFQ")
            current_status = rfq.status
            check_transition(RFQ_TRANSITIONS, "RFQ", current_status, status)

            now = self._clock()
            values: Dict[str, Any] = {"status": status, "updated_at": now}
            quote = None

            if status in STATUSES_REQUIRING_INSURER:
                insurer_id = selected_insurer_id if selected_insurer_id is not None else rfq.selected_insurer_id
                if insurer_id is None:
                    raise ValidationError(
                        "selectedInsurerId is required when status is Won or ConvertedToPolicy",
                        field="selected_insurer_id",
                    )
                quote = db_session.query(RfqInsurerQuote).filter(
                    RfqInsurerQuote.rfq_id == rfq_id,
                    RfqInsurerQuote.insurer_id == insurer_id
                ).first()
                if quote is None:
                    logger.info(f"Insurer not quoted | rfq_id={rfq_id} | insurer_id={insurer_id}")
                    raise InsurerNotQuoted(rfq_id=rfq_id, insurer_id=insurer_id, current_status=current_status)
                values["selected_insurer_id"] = insurer_id

            policy = None
            if status == "ConvertedToPolicy":
                policy_number = self.allocator.next_policy_number()
                policy = self._policy_from_rfq(rfq, values["selected_insurer_id"], policy_number, now)

            compare_and_set(db_session, rfq, "status", current_status, values, "RFQ")
            if quote is not None:
                quote.is_selected = True
                quote.updated_at = now
            if policy is not None:
                db_session.add(policy)

        if policy is not None:
            db_session.refresh(policy)
            logger.info(
                f"RFQ converted to policy | rfq_id={rfq_id} | policy_id={policy.id} | "
                f"policy_number={policy.policy_number}"
            )
        logger.info(f"RFQ status changed | rfq_id={rfq_id} | from={current_status} | to={status}")
        db_session.refresh(rfq)
        return {"rfq": rfq, "policy": policy}

    def _policy_from_rfq(self, rfq: Rfq, insurer_id: int, policy_number: str, now: datetime) -> Policy:
        start = now.date()
        return Policy(
            policy_number=policy_number,
            client_id=rfq.client_id,
            insurer_id=insurer_id,
            rfq_id=rfq.id,
            lob_id=rfq.primary_lob_id,
            sub_lob_id=rfq.sub_lob_id,
            sum_insured=rfq.expected_sum_insured or 0,
            gross_premium=rfq.expected_gross_premium or 0,
            currency=rfq.currency,
            policy_start_date=start,
            policy_end_date=start + timedelta(days=int(self.settings.get("default_term_days", 365))),
            status=self.settings.get("converted_status", "active"),
            created_by=rfq.created_by,
            created_at=now,
            updated_at=now,
        )
