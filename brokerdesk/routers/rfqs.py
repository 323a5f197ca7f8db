"""
RFQ router: insurer quotes and status changes.
"""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from brokerdesk.schemas import (
    AuthContext, InsurerQuoteRequest, RfqStatusRequest, RfqResponse, RfqStatusResponse, PolicyResponse
)
from brokerdesk.deps import get_auth_context, get_rfq_workflow
from brokerdesk.db import get_session
from brokerdesk.models import Rfq
from brokerdesk.errors import NotFound
from brokerdesk.services.rfq import RfqWorkflow

router = APIRouter()


@router.get("/rfqs/{rfq_id}", response_model=RfqResponse)
async def get_rfq(
    rfq_id: int,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session)
):
    rfq = session.query(Rfq).filter(Rfq.id == rfq_id).first()
    if not rfq:
        raise NotFound("RFQ not found", entity="RFQ", id=rfq_id)
    return RfqResponse.model_validate(rfq)


@router.post("/rfqs/{rfq_id}/quotes")
async def record_insurer_quote(
    rfq_id: int,
    request: InsurerQuoteRequest,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
    workflow: RfqWorkflow = Depends(get_rfq_workflow)
):
    """Record (or replace) an insurer's quote on an RFQ."""
    quote = workflow.record_insurer_quote(
        session,
        rfq_id,
        request.insurer_id,
        request.offered_rate_pct,
        request.offered_gross_premium,
        request.notes,
    )
    return {
        "id": quote.id,
        "rfq_id": quote.rfq_id,
        "insurer_id": quote.insurer_id,
        "offered_rate_pct": quote.offered_rate_pct,
        "offered_gross_premium": quote.offered_gross_premium,
        "notes": quote.notes,
        "is_selected": quote.is_selected,
    }


@router.patch("/rfqs/{rfq_id}/status", response_model=RfqStatusResponse)
async def change_rfq_status(
    rfq_id: int,
    request: RfqStatusRequest,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
    workflow: RfqWorkflow = Depends(get_rfq_workflow)
):
    """
    Move an RFQ through Draft -> Quoted -> Won -> ConvertedToPolicy (or Lost).

    Conversion returns the newly created policy alongside the RFQ.
    """
    result = workflow.change_status(session, rfq_id, request.status, request.selected_insurer_id)
    policy = result["policy"]
    return RfqStatusResponse(
        rfq=RfqResponse.model_validate(result["rfq"]),
        policy=PolicyResponse.model_validate(policy) if policy is not None else None,
    )
