"""
Typed errors raised by the engine.

Business-rule errors are expected outcomes the caller renders to the user.
Infrastructure errors are hard failures and must surface as 5xx responses.
"""

from typing import Dict, Any, Optional


class EngineError(Exception):
    """Base class carrying a stable machine-readable code and context."""

    code = "ENGINE_ERROR"
    http_status = 500
    default_message = "Engine error"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details: Dict[str, Any] = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class BusinessRuleError(EngineError):
    """Expected, caller-recoverable rejection. Never retried automatically."""

    code = "BUSINESS_RULE_VIOLATION"
    http_status = 400


class InfrastructureError(EngineError):
    """Systemic failure of the store or transaction layer."""

    code = "INFRASTRUCTURE_ERROR"
    http_status = 503


# Input and lookup

class ValidationError(BusinessRuleError):
    code = "VALIDATION_ERROR"
    http_status = 400
    default_message = "Invalid input"


class NotFound(BusinessRuleError):
    code = "NOT_FOUND"
    http_status = 404
    default_message = "Entity not found"


# State machine

class InvalidTransition(BusinessRuleError):
    code = "INVALID_TRANSITION"
    http_status = 409
    default_message = "Transition not allowed from the current status"


class StatusUnchanged(BusinessRuleError):
    code = "STATUS_UNCHANGED"
    http_status = 400
    default_message = "Entity is already in this status"


class InsurerNotQuoted(BusinessRuleError):
    code = "INSURER_NOT_QUOTED"
    http_status = 400
    default_message = "Selected insurer has not quoted on this RFQ"


class Conflict(BusinessRuleError):
    code = "CONFLICT"
    http_status = 409
    default_message = "Entity was modified concurrently"


# Authorization gates

class InsufficientApprovalLevel(BusinessRuleError):
    code = "INSUFFICIENT_APPROVAL_LEVEL"
    http_status = 403
    default_message = "Insufficient approval level"


class InsufficientOverrideAuthority(BusinessRuleError):
    code = "INSUFFICIENT_OVERRIDE_AUTHORITY"
    http_status = 403
    default_message = "User is not permitted to override the minimum premium"


class InsufficientPermissions(BusinessRuleError):
    code = "INSUFFICIENT_PERMISSIONS"
    http_status = 403
    default_message = "Insufficient permissions"


# Idempotency and preconditions

class AlreadyRenewed(BusinessRuleError):
    code = "ALREADY_RENEWED"
    http_status = 409
    default_message = "Policy already has a renewal"


class SlipAlreadyGenerated(BusinessRuleError):
    code = "SLIP_ALREADY_GENERATED"
    http_status = 409
    default_message = "Broking slip already generated for this policy"


class SlipNotGenerated(BusinessRuleError):
    code = "SLIP_NOT_GENERATED"
    http_status = 400
    default_message = "Broking slip not yet generated"


class SlipExpired(BusinessRuleError):
    code = "SLIP_EXPIRED"
    http_status = 400
    default_message = "Broking slip has expired. Please generate a new slip."


# Business rules

class BelowMinimumPremium(BusinessRuleError):
    code = "BELOW_MIN_PREMIUM"
    http_status = 422
    default_message = "Resulting policy premium below minimum for LOB/Sub-LOB"


# Infrastructure

class SequenceExhausted(InfrastructureError):
    code = "SEQUENCE_EXHAUSTED"
    http_status = 503
    default_message = "Sequence allocation could not complete"
