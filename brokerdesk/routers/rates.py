"""
Rates router: premium calculation, breakdowns and rate configuration lookup.
"""

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session
from typing import Optional

from brokerdesk.schemas import (
    AuthContext, PremiumRequest, PremiumResponse, BreakdownRequest, RateConfigResponse
)
from brokerdesk.deps import get_auth_context
from brokerdesk.db import get_session
from brokerdesk.services.rates import get_rate_config, quote_premium
from brokerdesk.services.premium import (
    premium_breakdown, levies_from_rates, suggest_brokerage_slab, format_currency
)

router = APIRouter()


@router.post("/premium/calculate", response_model=PremiumResponse)
async def calculate_premium(
    request: PremiumRequest,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session)
):
    """
    Calculate gross premium for a sum insured.

    The sub-line's overrides apply field by field over the line defaults,
    and the minimum premium is the floor.
    """
    result = quote_premium(session, request.lob_id, request.sum_insured, request.sub_lob_id)
    return PremiumResponse(**result, display_premium=format_currency(result["calculated_premium"]))


@router.post("/premium/breakdown")
async def calculate_breakdown(
    request: BreakdownRequest,
    include_statutory_levies: bool = Query(False),
    auth: AuthContext = Depends(get_auth_context)
):
    """Brokerage, VAT, commission and net amounts for a gross premium."""
    levies = request.levies
    if levies is None and include_statutory_levies:
        levies = levies_from_rates(request.gross_premium)
    result = premium_breakdown(
        request.gross_premium,
        request.brokerage_pct,
        request.vat_pct,
        request.agent_commission_pct,
        levies,
    )
    result["suggested_slab"] = suggest_brokerage_slab(request.gross_premium)
    result["display_net_amount_due"] = format_currency(result["net_amount_due"])
    return result


@router.get("/lobs/{lob_id}/rate-config", response_model=RateConfigResponse)
async def rate_config(
    lob_id: int,
    sub_lob_id: Optional[int] = Query(None),
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session)
):
    return get_rate_config(session, lob_id, sub_lob_id)
