"""
Pydantic schemas for request/response validation.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, date


class AuthContext(BaseModel):
    """Acting user, supplied by the caller's auth middleware."""
    user_id: int
    role: str = "Viewer"
    approval_level: str = Field("L1", pattern="^L[1-3]$")
    max_override_limit: float = Field(0, ge=0)


# Request schemas

class RfqStatusRequest(BaseModel):
    """RFQ status change request."""
    status: str
    selected_insurer_id: Optional[int] = None


class InsurerQuoteRequest(BaseModel):
    """Insurer quote against an RFQ."""
    insurer_id: int
    offered_rate_pct: float = Field(ge=0, le=100)
    offered_gross_premium: float = Field(ge=0)
    notes: Optional[str] = None


class PolicyCreateRequest(BaseModel):
    """Direct policy creation request."""
    client_id: int
    insurer_id: int
    lob_id: int
    sub_lob_id: Optional[int] = None
    sum_insured: float = Field(ge=0)
    gross_premium: float = Field(ge=0)
    currency: str = "NGN"
    policy_start_date: date
    policy_end_date: date
    override_minimum: bool = False


class SubmitSlipRequest(BaseModel):
    insurer_id: Optional[int] = None
    notes: Optional[str] = None


class SlipResponseRequest(BaseModel):
    """Insurer's response to a submitted broking slip."""
    response: str = Field(description="bound or declined")
    response_notes: Optional[str] = None
    confirmed_gross_premium: Optional[float] = Field(None, ge=0)
    confirmed_sum_insured: Optional[float] = Field(None, ge=0)


class RenewalRequest(BaseModel):
    """Policy renewal request."""
    policy_end_date: date
    policy_start_date: Optional[date] = None
    sum_insured: Optional[float] = Field(None, ge=0)
    gross_premium: Optional[float] = Field(None, ge=0)
    adjustment_percent: Optional[float] = None


class EndorsementCreateRequest(BaseModel):
    """Endorsement creation request."""
    policy_id: int
    type: str = Field(min_length=1)
    effective_date: date
    description: str = Field(min_length=1)
    sum_insured_delta: float = 0
    gross_premium_delta: float = 0
    brokerage_pct: Optional[float] = Field(None, ge=0, le=100)
    vat_pct: float = Field(7.5, ge=0, le=100)
    levies: Optional[Dict[str, float]] = None


class PremiumRequest(BaseModel):
    """Premium calculation request for a line and optional sub-line."""
    lob_id: int
    sub_lob_id: Optional[int] = None
    sum_insured: float = Field(gt=0)


class BreakdownRequest(BaseModel):
    """Brokerage/VAT breakdown request."""
    gross_premium: float = Field(ge=0)
    brokerage_pct: float = Field(ge=0, le=100)
    vat_pct: float = Field(7.5, ge=0, le=100)
    agent_commission_pct: float = Field(0, ge=0, le=100)
    levies: Optional[Dict[str, float]] = None


# Response schemas

class PremiumBreakdownDetail(BaseModel):
    sum_insured: float
    rate: float
    calculated_amount: float
    minimum_required: float
    final_premium: float


class PremiumResponse(BaseModel):
    """Premium calculation result."""
    calculated_premium: float
    applied_rate: float
    rate_basis: str
    min_premium: float
    is_using_minimum: bool
    breakdown: PremiumBreakdownDetail
    display_premium: str


class RateConfigResponse(BaseModel):
    min_premium: float
    default_brokerage_pct: float
    default_vat_pct: float
    rate_basis: Optional[str]
    rating_inputs: Optional[Dict[str, Any]]
    sub_lob_name: Optional[str]
    sub_lob_code: Optional[str]


class PolicyResponse(BaseModel):
    """Policy details response."""
    id: int
    policy_number: str
    client_id: int
    insurer_id: int
    rfq_id: Optional[int]
    lob_id: int
    sub_lob_id: Optional[int]
    sum_insured: float
    gross_premium: float
    currency: str
    policy_start_date: date
    policy_end_date: date
    status: Optional[str]
    confirmation_date: Optional[datetime]
    is_renewal: bool
    renewed_from_policy_id: Optional[int]
    renewed_to_policy_id: Optional[int]
    slip_number: Optional[str]
    slip_status: Optional[str]
    slip_generated_at: Optional[datetime]
    slip_valid_until: Optional[datetime]
    submitted_to_insurer_at: Optional[datetime]
    insurer_response_at: Optional[datetime]
    auto_expired: Optional[bool]

    model_config = {"from_attributes": True}


class RfqResponse(BaseModel):
    id: int
    client_id: int
    primary_lob_id: int
    sub_lob_id: Optional[int]
    status: str
    selected_insurer_id: Optional[int]
    expected_sum_insured: Optional[float]
    expected_gross_premium: Optional[float]
    currency: str

    model_config = {"from_attributes": True}


class RfqStatusResponse(BaseModel):
    rfq: RfqResponse
    policy: Optional[PolicyResponse] = None


class EndorsementResponse(BaseModel):
    id: int
    endorsement_number: str
    policy_id: int
    type: str
    effective_date: date
    sum_insured_delta: float
    gross_premium_delta: float
    brokerage_pct: float
    vat_pct: float
    brokerage_amount: float
    vat_amount: float
    net_amount_due: float
    status: str
    prepared_by: Optional[int]
    authorized_by: Optional[int]

    model_config = {"from_attributes": True}


class EndorsementIssueResponse(BaseModel):
    endorsement: EndorsementResponse
    resulting_premium: float
    min_premium: float
    override_applied: bool


class RenewalResponse(BaseModel):
    original_policy_id: int
    renewal_policy: PolicyResponse
    adjustments: Dict[str, Any]


class AutoExpiryReport(BaseModel):
    """Result of an auto-expiry sweep."""
    expired: int
    policies: List[Dict[str, Any]]
    dry_run: bool
    timestamp: datetime
    message: str


class ExpiringPoliciesResponse(BaseModel):
    policies: List[Dict[str, Any]]
    summary: Dict[str, int]
