"""
Policies router: creation, broking slips, renewal and expiry.
"""

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from brokerdesk.schemas import (
    AuthContext, PolicyCreateRequest, PolicyResponse, SubmitSlipRequest, SlipResponseRequest,
    RenewalRequest, RenewalResponse, AutoExpiryReport, ExpiringPoliciesResponse
)
from brokerdesk.deps import get_auth_context, get_policy_workflow
from brokerdesk.db import get_session
from brokerdesk.services.policy_workflow import PolicyWorkflow

router = APIRouter()


@router.post("/policies", response_model=PolicyResponse, status_code=201)
async def create_policy(
    request: PolicyCreateRequest,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
    workflow: PolicyWorkflow = Depends(get_policy_workflow)
):
    """
    Create a draft policy.

    A premium below the line/sub-line minimum is rejected with
    BELOW_MIN_PREMIUM unless override_minimum is set by a user with
    override authority.
    """
    policy = workflow.create_policy(
        session,
        auth,
        client_id=request.client_id,
        insurer_id=request.insurer_id,
        lob_id=request.lob_id,
        sub_lob_id=request.sub_lob_id,
        sum_insured=request.sum_insured,
        gross_premium=request.gross_premium,
        currency=request.currency,
        policy_start_date=request.policy_start_date,
        policy_end_date=request.policy_end_date,
        override_minimum=request.override_minimum,
    )
    return PolicyResponse.model_validate(policy)


@router.post("/policies/auto-expire", response_model=AutoExpiryReport)
async def auto_expire_policies(
    dry_run: bool = Query(False),
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
    workflow: PolicyWorkflow = Depends(get_policy_workflow)
):
    """Expire live policies past their end date. Safe to run repeatedly."""
    return workflow.auto_expire_policies(session, dry_run=dry_run)


@router.get("/policies/expiring", response_model=ExpiringPoliciesResponse)
async def list_expiring_policies(
    days: int = Query(60, ge=0),
    status: str = Query("active"),
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
    workflow: PolicyWorkflow = Depends(get_policy_workflow)
):
    return workflow.list_expiring_policies(session, days=days, status=status)


@router.get("/policies/{policy_id}", response_model=PolicyResponse)
async def get_policy(
    policy_id: int,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
    workflow: PolicyWorkflow = Depends(get_policy_workflow)
):
    return PolicyResponse.model_validate(workflow.get_policy(session, policy_id))


@router.post("/policies/{policy_id}/generate-slip", response_model=PolicyResponse)
async def generate_slip(
    policy_id: int,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
    workflow: PolicyWorkflow = Depends(get_policy_workflow)
):
    return PolicyResponse.model_validate(workflow.generate_slip(session, policy_id))


@router.post("/policies/{policy_id}/submit-slip")
async def submit_slip(
    policy_id: int,
    request: SubmitSlipRequest,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
    workflow: PolicyWorkflow = Depends(get_policy_workflow)
):
    """Submit the broking slip to the insurer, optionally switching insurer."""
    policy = workflow.submit_slip(session, policy_id, insurer_id=request.insurer_id)
    return {
        "policy": PolicyResponse.model_validate(policy),
        "notes": request.notes,
    }


@router.post("/policies/{policy_id}/slip-response", response_model=PolicyResponse)
async def record_slip_response(
    policy_id: int,
    request: SlipResponseRequest,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
    workflow: PolicyWorkflow = Depends(get_policy_workflow)
):
    policy = workflow.record_slip_response(
        session,
        policy_id,
        request.response,
        response_notes=request.response_notes,
        confirmed_gross_premium=request.confirmed_gross_premium,
        confirmed_sum_insured=request.confirmed_sum_insured,
    )
    return PolicyResponse.model_validate(policy)


@router.post("/policies/{policy_id}/renew", response_model=RenewalResponse, status_code=201)
async def renew_policy(
    policy_id: int,
    request: RenewalRequest,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
    workflow: PolicyWorkflow = Depends(get_policy_workflow)
):
    """Create the renewal of a policy. A policy can be renewed once."""
    result = workflow.renew_policy(
        session,
        policy_id,
        policy_end_date=request.policy_end_date,
        policy_start_date=request.policy_start_date,
        sum_insured=request.sum_insured,
        gross_premium=request.gross_premium,
        adjustment_percent=request.adjustment_percent,
        auth=auth,
    )
    return RenewalResponse(
        original_policy_id=result["original_policy_id"],
        renewal_policy=PolicyResponse.model_validate(result["renewal_policy"]),
        adjustments=result["adjustments"],
    )
