"""
Dependencies for the acting-user context and the workflow services.
"""

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import ValidationError as PydanticValidationError

from brokerdesk.db import session_factory
from brokerdesk.schemas import AuthContext
from brokerdesk.services.sequences import SequenceStore
from brokerdesk.services.codes import CodeAllocator
from brokerdesk.services.rfq import RfqWorkflow
from brokerdesk.services.policy_workflow import PolicyWorkflow
from brokerdesk.services.endorsements import EndorsementWorkflow

security = HTTPBearer()


async def get_auth_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> AuthContext:
    """
    Build the acting user's authorization context from request headers.

    Session authentication happens upstream; the gateway forwards the
    user's id, role, approval level and override limit as headers.
    """
    user_id = request.headers.get("X-User-Id")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header"
        )

    try:
        return AuthContext(
            user_id=user_id,
            role=request.headers.get("X-Role", "Viewer"),
            approval_level=request.headers.get("X-Approval-Level", "L1").upper(),
            max_override_limit=request.headers.get("X-Max-Override-Limit", 0),
        )
    except PydanticValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authorization headers: {e.errors()[0]['msg']}"
        )


def get_sequence_store() -> SequenceStore:
    """Sequence store on the application engine; each allocation opens its own session."""
    return SequenceStore(session_factory())


def get_code_allocator(store: SequenceStore = Depends(get_sequence_store)) -> CodeAllocator:
    return CodeAllocator(store)


def get_rfq_workflow(allocator: CodeAllocator = Depends(get_code_allocator)) -> RfqWorkflow:
    return RfqWorkflow(allocator)


def get_policy_workflow(allocator: CodeAllocator = Depends(get_code_allocator)) -> PolicyWorkflow:
    return PolicyWorkflow(allocator)


def get_endorsement_workflow(allocator: CodeAllocator = Depends(get_code_allocator)) -> EndorsementWorkflow:
    return EndorsementWorkflow(allocator)
