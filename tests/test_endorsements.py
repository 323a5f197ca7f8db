"""
Tests for the endorsement workflow: preparation, the L2 approval gate and
the L3 issue gate with the minimum-premium override.
"""

import json
import pytest
from datetime import date
from sqlmodel import Session

from brokerdesk.errors import (
    InsufficientApprovalLevel, InsufficientPermissions, BelowMinimumPremium, InvalidTransition,
    StatusUnchanged, ValidationError, NotFound
)
from brokerdesk.models import Endorsement, Policy
from brokerdesk.schemas import AuthContext


def _reload(engine, model, entity_id):
    with Session(engine) as fresh:
        return fresh.query(model).filter(model.id == entity_id).one()


@pytest.fixture
def endorse(session, endorsement_workflow, underwriter):
    def _create(policy, **overrides):
        values = dict(
            policy_id=policy.id,
            type="Additional Premium",
            effective_date=date(2025, 3, 20),
            description="Increase in vehicle value",
            sum_insured_delta=200000,
            gross_premium_delta=10000,
        )
        values.update(overrides)
        return endorsement_workflow.create_endorsement(session, underwriter, **values)
    return _create


# ============================================================================
# 1. PREPARATION
# ============================================================================

class TestCreateEndorsement:
    """Draft endorsements with brokerage/VAT on the premium delta."""

    def test_create_with_line_brokerage(self, make_policy, endorse, underwriter):
        policy = make_policy(lob_id=2, gross_premium=20000)
        endorsement = endorse(policy)

        assert endorsement.endorsement_number == "END/2025/00001"
        assert endorsement.status == "Draft"
        assert endorsement.prepared_by == underwriter.user_id
        assert endorsement.authorized_by is None
        assert endorsement.brokerage_pct == 12.5
        assert endorsement.vat_pct == 7.5
        assert endorsement.brokerage_amount == pytest.approx(1250)
        assert endorsement.vat_amount == pytest.approx(93.75)
        assert endorsement.net_amount_due == pytest.approx(8656.25)

    def test_sub_line_brokerage_default(self, make_policy, endorse):
        policy = make_policy(lob_id=2, sub_lob_id=2, gross_premium=20000)
        assert endorse(policy).brokerage_pct == 10

    def test_explicit_brokerage_and_levies(self, make_policy, endorse):
        policy = make_policy(lob_id=2, gross_premium=20000)
        endorsement = endorse(policy, brokerage_pct=20, vat_pct=5, levies={"naicom": 100})

        assert endorsement.brokerage_amount == pytest.approx(2000)
        assert endorsement.vat_amount == pytest.approx(100)
        assert endorsement.net_amount_due == pytest.approx(7800)
        assert json.loads(endorsement.levies_json) == {"naicom": 100}

    def test_role_gate(self, session, endorsement_workflow, make_policy, manager):
        policy = make_policy()
        with pytest.raises(InsufficientPermissions) as exc_info:
            endorsement_workflow.create_endorsement(
                session, manager, policy_id=policy.id, type="Extension",
                effective_date=date(2025, 3, 20), description="Extend cover"
            )
        assert exc_info.value.details["role"] == "Manager"
        assert session.query(Endorsement).count() == 0

    @pytest.mark.parametrize("field,value", [
        ("brokerage_pct", 120),
        ("brokerage_pct", -1),
        ("vat_pct", 101),
    ])
    def test_percentages_validated(self, make_policy, endorse, field, value):
        policy = make_policy()
        with pytest.raises(ValidationError):
            endorse(policy, **{field: value})

    def test_description_required(self, make_policy, endorse):
        policy = make_policy()
        with pytest.raises(ValidationError):
            endorse(policy, description="  ")

    def test_missing_policy(self, session, endorsement_workflow, underwriter):
        with pytest.raises(NotFound):
            endorsement_workflow.create_endorsement(
                session, underwriter, policy_id=999, type="Extension",
                effective_date=date(2025, 3, 20), description="Extend cover"
            )


# ============================================================================
# 2. APPROVAL
# ============================================================================

class TestApprove:
    """Draft -> Approved requires L2."""

    def test_l1_rejected_and_stays_draft(self, session, engine, endorsement_workflow, make_policy, endorse, underwriter):
        endorsement = endorse(make_policy())

        with pytest.raises(InsufficientApprovalLevel) as exc_info:
            endorsement_workflow.approve(session, endorsement.id, underwriter)

        assert exc_info.value.details["required_level"] == "L2"
        assert exc_info.value.details["actual_level"] == "L1"
        assert _reload(engine, Endorsement, endorsement.id).status == "Draft"

    def test_l2_approves(self, session, endorsement_workflow, make_policy, endorse, manager):
        endorsement = endorse(make_policy())
        approved = endorsement_workflow.approve(session, endorsement.id, manager)

        assert approved.status == "Approved"
        assert approved.authorized_by == manager.user_id

    def test_l3_also_approves(self, session, endorsement_workflow, make_policy, endorse, director):
        endorsement = endorse(make_policy())
        assert endorsement_workflow.approve(session, endorsement.id, director).status == "Approved"

    def test_approve_twice(self, session, endorsement_workflow, make_policy, endorse, manager):
        endorsement = endorse(make_policy())
        endorsement_workflow.approve(session, endorsement.id, manager)
        with pytest.raises(StatusUnchanged):
            endorsement_workflow.approve(session, endorsement.id, manager)

    def test_missing_endorsement(self, session, endorsement_workflow, manager):
        with pytest.raises(NotFound):
            endorsement_workflow.approve(session, 999, manager)


# ============================================================================
# 3. ISSUE
# ============================================================================

class TestIssue:
    """Approved -> Issued requires L3 and a premium at or above the minimum."""

    def _approved(self, session, endorsement_workflow, endorse, policy, manager, **overrides):
        endorsement = endorse(policy, **overrides)
        endorsement_workflow.approve(session, endorsement.id, manager)
        return endorsement

    def test_l2_cannot_issue(self, session, endorsement_workflow, make_policy, endorse, manager):
        endorsement = self._approved(session, endorsement_workflow, endorse, make_policy(), manager)
        with pytest.raises(InsufficientApprovalLevel) as exc_info:
            endorsement_workflow.issue(session, endorsement.id, manager)
        assert exc_info.value.details["required_level"] == "L3"

    def test_draft_cannot_be_issued(self, session, endorsement_workflow, make_policy, endorse, director):
        endorsement = endorse(make_policy())
        with pytest.raises(InvalidTransition):
            endorsement_workflow.issue(session, endorsement.id, director)

    def test_issue(self, session, engine, endorsement_workflow, make_policy, endorse, manager, director):
        policy = make_policy(lob_id=2, gross_premium=20000)
        endorsement = self._approved(session, endorsement_workflow, endorse, policy, manager)

        result = endorsement_workflow.issue(session, endorsement.id, director)

        assert result["endorsement"].status == "Issued"
        assert result["resulting_premium"] == 30000
        assert result["min_premium"] == 15000
        assert result["override_applied"] is False
        # Policy premium is not rewritten by an endorsement
        assert _reload(engine, Policy, policy.id).gross_premium == 20000

    def test_shortfall_without_override_authority(self, session, engine, endorsement_workflow, make_policy, endorse,
                                                  manager, director):
        # TPO sub-line minimum is 5000; 6000 - 2000 leaves 4000
        policy = make_policy(lob_id=2, sub_lob_id=2, gross_premium=6000)
        endorsement = self._approved(session, endorsement_workflow, endorse, policy, manager, gross_premium_delta=-2000)

        with pytest.raises(BelowMinimumPremium) as exc_info:
            endorsement_workflow.issue(session, endorsement.id, director)

        error = exc_info.value
        assert error.code == "BELOW_MIN_PREMIUM"
        assert error.http_status == 422
        assert error.details["resulting_premium"] == 4000
        assert error.details["min_premium"] == 5000
        assert error.details["shortfall"] == 1000
        assert error.details["can_override"] is False
        assert error.details["user_max_override"] == 800
        assert _reload(engine, Endorsement, endorsement.id).status == "Approved"

    def test_admin_override_within_limit(self, session, endorsement_workflow, make_policy, endorse, manager, admin):
        policy = make_policy(lob_id=2, sub_lob_id=2, gross_premium=6000)
        endorsement = self._approved(session, endorsement_workflow, endorse, policy, manager, gross_premium_delta=-2000)

        result = endorsement_workflow.issue(session, endorsement.id, admin)

        assert result["endorsement"].status == "Issued"
        assert result["override_applied"] is True
        assert result["resulting_premium"] == 4000

    def test_admin_override_limit_too_small(self, session, endorsement_workflow, make_policy, endorse, manager):
        policy = make_policy(lob_id=2, sub_lob_id=2, gross_premium=6000)
        endorsement = self._approved(session, endorsement_workflow, endorse, policy, manager, gross_premium_delta=-2000)
        small_limit_admin = AuthContext(user_id=41, role="Admin", approval_level="L3", max_override_limit=500)

        with pytest.raises(BelowMinimumPremium) as exc_info:
            endorsement_workflow.issue(session, endorsement.id, small_limit_admin)
        assert exc_info.value.details["user_max_override"] == 500

    def test_issued_is_terminal(self, session, endorsement_workflow, make_policy, endorse, manager, director):
        endorsement = self._approved(session, endorsement_workflow, endorse, make_policy(), manager)
        endorsement_workflow.issue(session, endorsement.id, director)
        with pytest.raises(StatusUnchanged):
            endorsement_workflow.issue(session, endorsement.id, director)
