"""
Endorsements router: preparation, approval (L2) and issue (L3).
"""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from brokerdesk.schemas import (
    AuthContext, EndorsementCreateRequest, EndorsementResponse, EndorsementIssueResponse
)
from brokerdesk.deps import get_auth_context, get_endorsement_workflow
from brokerdesk.db import get_session
from brokerdesk.services.endorsements import EndorsementWorkflow

router = APIRouter()


@router.post("/endorsements", response_model=EndorsementResponse, status_code=201)
async def create_endorsement(
    request: EndorsementCreateRequest,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
    workflow: EndorsementWorkflow = Depends(get_endorsement_workflow)
):
    """Prepare a draft endorsement. Underwriters and admins only."""
    endorsement = workflow.create_endorsement(
        session,
        auth,
        policy_id=request.policy_id,
        type=request.type,
        effective_date=request.effective_date,
        description=request.description,
        sum_insured_delta=request.sum_insured_delta,
        gross_premium_delta=request.gross_premium_delta,
        brokerage_pct=request.brokerage_pct,
        vat_pct=request.vat_pct,
        levies=request.levies,
    )
    return EndorsementResponse.model_validate(endorsement)


@router.get("/endorsements/{endorsement_id}", response_model=EndorsementResponse)
async def get_endorsement(
    endorsement_id: int,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
    workflow: EndorsementWorkflow = Depends(get_endorsement_workflow)
):
    return EndorsementResponse.model_validate(workflow.get_endorsement(session, endorsement_id))


@router.post("/endorsements/{endorsement_id}/approve", response_model=EndorsementResponse)
async def approve_endorsement(
    endorsement_id: int,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
    workflow: EndorsementWorkflow = Depends(get_endorsement_workflow)
):
    return EndorsementResponse.model_validate(workflow.approve(session, endorsement_id, auth))


@router.post("/endorsements/{endorsement_id}/issue", response_model=EndorsementIssueResponse)
async def issue_endorsement(
    endorsement_id: int,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
    workflow: EndorsementWorkflow = Depends(get_endorsement_workflow)
):
    """
    Issue an approved endorsement.

    Rejected with BELOW_MIN_PREMIUM (shortfall and override eligibility in
    the details) when the resulting policy premium is under the minimum.
    """
    result = workflow.issue(session, endorsement_id, auth)
    return EndorsementIssueResponse(
        endorsement=EndorsementResponse.model_validate(result["endorsement"]),
        resulting_premium=result["resulting_premium"],
        min_premium=result["min_premium"],
        override_applied=result["override_applied"],
    )
