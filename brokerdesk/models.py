"""
SQLModel database models for the brokerage back office engine.
"""

from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from typing import Optional
from datetime import datetime, date


class SequenceCounter(SQLModel, table=True):
    """Durable counter keyed by (scope, year, subtype). Never deleted."""
    __tablename__ = "sequence_counter"
    __table_args__ = (
        UniqueConstraint("scope", "year", "subtype", name="uq_sequence_scope_year_subtype"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    scope: str = Field(index=True)
    year: int
    subtype: str = ""  # empty string when the key has no subtype
    last_allocated: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class LineOfBusiness(SQLModel, table=True):
    """Product category carrying default rating configuration."""
    __tablename__ = "line_of_business"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    code: Optional[str] = None
    min_premium: float = 0
    default_brokerage_pct: Optional[float] = None
    default_vat_pct: Optional[float] = None
    rate_basis: Optional[str] = None  # per_mille, percentage or flat
    rating_inputs: Optional[str] = None  # JSON string


class SubLineOfBusiness(SQLModel, table=True):
    """Sub-category whose override fields take precedence over the parent line."""
    __tablename__ = "sub_line_of_business"

    id: Optional[int] = Field(default=None, primary_key=True)
    lob_id: int = Field(foreign_key="line_of_business.id", index=True)
    name: str
    code: Optional[str] = None
    override_min_premium: Optional[float] = None
    override_brokerage_pct: Optional[float] = None
    override_vat_pct: Optional[float] = None
    override_rate_basis: Optional[str] = None
    override_rating_inputs: Optional[str] = None  # JSON string


class Rfq(SQLModel, table=True):
    """Request for quotation circulated to insurers."""
    id: Optional[int] = Field(default=None, primary_key=True)
    client_id: int
    primary_lob_id: int = Field(foreign_key="line_of_business.id")
    sub_lob_id: Optional[int] = Field(default=None, foreign_key="sub_line_of_business.id")
    description: Optional[str] = None
    expected_sum_insured: Optional[float] = None
    expected_gross_premium: Optional[float] = None
    currency: str = "NGN"
    target_rate_pct: Optional[float] = None
    status: str = "Draft"
    selected_insurer_id: Optional[int] = None
    created_by: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class RfqInsurerQuote(SQLModel, table=True):
    """An insurer's priced response to an RFQ."""
    __tablename__ = "rfq_insurer_quote"
    __table_args__ = (
        UniqueConstraint("rfq_id", "insurer_id", name="uq_rfq_insurer"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    rfq_id: int = Field(foreign_key="rfq.id", index=True)
    insurer_id: int
    offered_rate_pct: float
    offered_gross_premium: float
    notes: Optional[str] = None
    is_selected: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Policy(SQLModel, table=True):
    """Bound or pending insurance policy with its broking-slip sub-state."""
    id: Optional[int] = Field(default=None, primary_key=True)
    policy_number: str = Field(unique=True, index=True)
    client_id: int
    insurer_id: int
    rfq_id: Optional[int] = Field(default=None, foreign_key="rfq.id")
    lob_id: int = Field(foreign_key="line_of_business.id")
    sub_lob_id: Optional[int] = Field(default=None, foreign_key="sub_line_of_business.id")
    sum_insured: float
    gross_premium: float
    currency: str = "NGN"
    policy_start_date: date
    policy_end_date: date
    status: Optional[str] = "draft"  # draft, pending, active, expired, cancelled
    confirmation_date: Optional[datetime] = None

    is_renewal: bool = False
    renewed_from_policy_id: Optional[int] = Field(default=None, foreign_key="policy.id")
    renewed_to_policy_id: Optional[int] = Field(default=None, foreign_key="policy.id")

    slip_number: Optional[str] = Field(default=None, unique=True)
    slip_status: Optional[str] = None  # draft, submitted, bound, declined
    slip_generated_at: Optional[datetime] = None
    slip_valid_until: Optional[datetime] = None
    submitted_to_insurer_at: Optional[datetime] = None
    insurer_response_at: Optional[datetime] = None
    insurer_response_notes: Optional[str] = None

    auto_expired: Optional[bool] = False
    last_status_check: Optional[datetime] = None

    created_by: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Endorsement(SQLModel, table=True):
    """Post-issuance amendment to a policy."""
    id: Optional[int] = Field(default=None, primary_key=True)
    endorsement_number: str = Field(unique=True, index=True)
    policy_id: int = Field(foreign_key="policy.id", index=True)
    type: str
    effective_date: date
    description: str
    sum_insured_delta: float = 0
    gross_premium_delta: float = 0
    brokerage_pct: float = 0
    vat_pct: float = 7.5
    levies_json: Optional[str] = None  # JSON string
    brokerage_amount: float = 0
    vat_amount: float = 0
    net_amount_due: float = 0
    status: str = "Draft"  # Draft, Approved, Issued
    prepared_by: Optional[int] = None
    authorized_by: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
