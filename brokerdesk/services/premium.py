"""
Premium calculation engine.

Pure functions only: no database access, no clamping and no rounding.
Amounts keep full precision until format_currency renders them.
"""

from typing import Dict, Any, Optional, List, Mapping, Union
import json

from brokerdesk.cache import config_cache

RATE_BASIS_PER_MILLE = "per_mille"
RATE_BASIS_PERCENTAGE = "percentage"
RATE_BASIS_FLAT = "flat"

# Used when a rate table gives no rate at all
FALLBACK_RATES = {
    RATE_BASIS_PER_MILLE: 20.0,
    RATE_BASIS_PERCENTAGE: 2.0,
}

DEFAULT_VAT_PCT = 7.5


def parse_rating_inputs(rating_inputs: Union[str, Mapping[str, Any], None]) -> Optional[Dict[str, Any]]:
    """Rating inputs are stored as JSON text; accept either form."""
    if rating_inputs is None or rating_inputs == "":
        return None
    if isinstance(rating_inputs, str):
        return json.loads(rating_inputs)
    return dict(rating_inputs)


def resolve_applied_rate(rate_table: Union[str, Mapping[str, Any], None], rate_basis: str) -> float:
    """
    Pick the rate to apply from a rate table.

    Order: ``defaultRate``, then ``rate``, then the fallback for the basis
    (20 per mille, otherwise 2).
    """
    rates = parse_rating_inputs(rate_table)
    if rates and rates.get("defaultRate") is not None:
        return float(rates["defaultRate"])
    if rates and rates.get("rate") is not None:
        return float(rates["rate"])
    return FALLBACK_RATES.get(rate_basis, FALLBACK_RATES[RATE_BASIS_PERCENTAGE])


def apply_rate(sum_insured: float, rate_basis: Optional[str], rate: float) -> float:
    """Raw premium for a basis; unknown or missing basis is treated as percentage."""
    if rate_basis == RATE_BASIS_PER_MILLE:
        return (sum_insured / 1000) * rate
    if rate_basis == RATE_BASIS_FLAT:
        return rate
    return sum_insured * rate / 100


def compute_premium(
    sum_insured: float,
    rate_basis: Optional[str],
    rate_table: Union[str, Mapping[str, Any], None],
    min_premium: Optional[float],
) -> Dict[str, Any]:
    """
    Compute gross premium with the minimum-premium floor.

    Formula:
        per_mille:  (sum_insured / 1000) * rate
        percentage: sum_insured * rate / 100
        flat:       rate

    Args:
        sum_insured: Sum insured
        rate_basis: per_mille, percentage or flat (anything else is percentage)
        rate_table: Rating inputs holding ``defaultRate`` or ``rate``
        min_premium: Floor premium for the line/sub-line

    Returns:
        Dict with calculated_premium (floored), applied_rate, rate_basis,
        min_premium, is_using_minimum and a breakdown
    """
    effective_basis = rate_basis if rate_basis in (
        RATE_BASIS_PER_MILLE, RATE_BASIS_PERCENTAGE, RATE_BASIS_FLAT
    ) else RATE_BASIS_PERCENTAGE
    min_premium = min_premium or 0
    applied_rate = resolve_applied_rate(rate_table, effective_basis)

    calculated_amount = apply_rate(sum_insured, effective_basis, applied_rate)
    final_premium = max(calculated_amount, min_premium)
    is_using_minimum = calculated_amount < min_premium

    return {
        "calculated_premium": final_premium,
        "applied_rate": applied_rate,
        "rate_basis": effective_basis,
        "min_premium": min_premium,
        "is_using_minimum": is_using_minimum,
        "breakdown": {
            "sum_insured": sum_insured,
            "rate": applied_rate,
            "calculated_amount": calculated_amount,
            "minimum_required": min_premium,
            "final_premium": final_premium,
        },
    }


def _override(value: Any, fallback: Any) -> Any:
    return value if value is not None else fallback


def _override_text(value: Any, fallback: Any) -> Any:
    return value if value not in (None, "") else fallback


def resolve_rate_config(lob: Any, sub_lob: Any = None) -> Dict[str, Any]:
    """
    Resolve effective rate configuration for a line and optional sub-line.

    Each sub-line override field wins individually when set; unset fields
    fall back to the parent line's value.

    Args:
        lob: LineOfBusiness row (or any object with the same attributes)
        sub_lob: Optional SubLineOfBusiness row

    Returns:
        Dict with min_premium, default_brokerage_pct, default_vat_pct,
        rate_basis, rating_inputs, sub_lob_name and sub_lob_code
    """
    config = {
        "min_premium": lob.min_premium or 0,
        "default_brokerage_pct": lob.default_brokerage_pct or 0,
        "default_vat_pct": _override(lob.default_vat_pct, DEFAULT_VAT_PCT),
        "rate_basis": lob.rate_basis,
        "rating_inputs": parse_rating_inputs(lob.rating_inputs),
        "sub_lob_name": None,
        "sub_lob_code": None,
    }
    if sub_lob is None:
        return config

    config.update({
        "min_premium": _override(sub_lob.override_min_premium, config["min_premium"]),
        "default_brokerage_pct": _override(sub_lob.override_brokerage_pct, config["default_brokerage_pct"]),
        "default_vat_pct": _override(sub_lob.override_vat_pct, config["default_vat_pct"]),
        "rate_basis": _override_text(sub_lob.override_rate_basis, config["rate_basis"]),
        "rating_inputs": _override_text(parse_rating_inputs(sub_lob.override_rating_inputs), config["rating_inputs"]),
        "sub_lob_name": sub_lob.name,
        "sub_lob_code": sub_lob.code,
    })
    return config


def levies_from_rates(gross_premium: float, levy_rates: Optional[Mapping[str, float]] = None) -> Dict[str, float]:
    """Convert percentage levy rates (of gross premium) into amounts."""
    if levy_rates is None:
        levy_rates = config_cache.get_section("financials").get("levy_rates", {})
    return {name: gross_premium * pct / 100 for name, pct in levy_rates.items()}


def premium_breakdown(
    gross_premium: float,
    brokerage_pct: float,
    vat_pct: float,
    agent_commission_pct: float,
    levies: Optional[Mapping[str, float]] = None,
) -> Dict[str, Any]:
    """
    Split a gross premium into brokerage, VAT, commission and net amounts.

    Percentages are expected in [0, 100]; callers validate them.

    Args:
        gross_premium: Gross premium (or premium delta for endorsements)
        brokerage_pct: Brokerage percentage of gross premium
        vat_pct: VAT percentage applied to the brokerage
        agent_commission_pct: Agent commission percentage of gross premium
        levies: Optional levy amounts keyed by levy name

    Returns:
        Dict of computed amounts
    """
    brokerage_amount = gross_premium * brokerage_pct / 100
    vat_on_brokerage = brokerage_amount * vat_pct / 100
    agent_commission_amount = gross_premium * agent_commission_pct / 100
    levy_amounts = dict(levies or {})
    levies_total = sum(float(v) for v in levy_amounts.values())

    return {
        "gross_premium": gross_premium,
        "brokerage_pct": brokerage_pct,
        "brokerage_amount": brokerage_amount,
        "vat_pct": vat_pct,
        "vat_on_brokerage": vat_on_brokerage,
        "agent_commission_pct": agent_commission_pct,
        "agent_commission_amount": agent_commission_amount,
        "net_brokerage": brokerage_amount - agent_commission_amount,
        "levies": {**levy_amounts, "total": levies_total},
        "net_amount_due": gross_premium - brokerage_amount - vat_on_brokerage - levies_total,
        "insurer_net_amount": gross_premium - brokerage_amount - levies_total,
    }


def check_minimum_premium(gross_premium: float, min_premium: float) -> Dict[str, Any]:
    """Report whether a premium meets the floor and by how much it falls short."""
    shortfall = min_premium - gross_premium if gross_premium < min_premium else 0
    return {
        "valid": shortfall == 0,
        "gross_premium": gross_premium,
        "min_premium": min_premium,
        "shortfall": shortfall,
    }


def suggest_brokerage_slab(gross_premium: float, slabs: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """Suggest a brokerage slab for a gross premium (highest threshold met wins)."""
    if slabs is None:
        slabs = config_cache.get_section("financials").get("brokerage_slabs", [])
    ordered = sorted(slabs, key=lambda s: s["min_gross_premium"], reverse=True)
    for slab in ordered:
        if gross_premium >= slab["min_gross_premium"]:
            return {"name": slab["name"], "pct": slab["pct"]}
    return {"name": "Custom", "pct": 0}


def calculate_gross_premium(sum_insured: float, rate_pct: float) -> float:
    return sum_insured * rate_pct / 100


def calculate_rate(sum_insured: float, gross_premium: float) -> float:
    if sum_insured == 0:
        return 0.0
    return gross_premium / sum_insured * 100


def calculate_sum_insured(gross_premium: float, rate_pct: float) -> float:
    if rate_pct == 0:
        return 0.0
    return gross_premium / rate_pct * 100


def calculate_commission_split(total_commission: float, splits: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Share a commission between agents by percentage."""
    return [
        {**split, "amount": total_commission * split["percentage"] / 100}
        for split in splits
    ]


def format_currency(amount: float, currency: Optional[str] = None) -> str:
    """Display boundary: the only place amounts are rounded."""
    if currency is None:
        currency = config_cache.get_section("financials").get("currency", "NGN")
    return f"{currency} {amount:,.2f}"
