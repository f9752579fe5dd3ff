"""
Pydantic schemas for the Django Ninja handlers that call the matching engine.

This module is the request and response contract for those external handlers;
nothing inside the engine imports it. A handler validates the body against one
of the `*In` schemas, resolves the actor from the authenticated request, and
passes the fields to the matching service. Command payloads validate shape
only; business rules live in the services.
"""

from typing import Literal

from ninja import Field, Schema
from pydantic import field_validator

from common.config import MatchingConfig

# ============================================================================
# Application Schemas
# ============================================================================

class CreateApplicationIn(Schema):
    """Student application to a supervisor.

    The acting student comes from the authenticated request, not the body.
    """
    supervisor_id: str = Field(..., min_length=1)
    project_title: str = Field(..., min_length=1, max_length=200)
    project_description: str = Field('', max_length=5000)
    partner_id: str | None = None


class ApplicationDecisionIn(Schema):
    """Supervisor decision payload (approve / reject / request revision)."""
    feedback: str | None = Field(None, max_length=2000)


class ResubmitApplicationIn(Schema):
    project_title: str | None = Field(None, min_length=1, max_length=200)
    project_description: str | None = Field(None, max_length=5000)


# ============================================================================
# Partnership Schemas
# ============================================================================

class CreatePartnershipRequestIn(Schema):
    target_id: str = Field(..., min_length=1)


class CreateSupervisorPartnershipRequestIn(Schema):
    """Co-supervision request for one of the requester's projects."""
    target_id: str = Field(..., min_length=1)
    project_id: str = Field(..., min_length=1)


class RespondToRequestIn(Schema):
    action: Literal['accept', 'reject']


# ============================================================================
# Project / Admin Schemas
# ============================================================================

class ProjectStatusChangeIn(Schema):
    new_status: Literal['pending_approval', 'approved', 'in_progress', 'completed', 'cancelled']


class CapacityOverrideIn(Schema):
    """Admin capacity override.

    A non-blank reason is mandatory; it is stored in the capacity change log.
    """
    max_capacity: int = Field(
        ...,
        ge=MatchingConfig.MIN_SUPERVISOR_CAPACITY,
        le=MatchingConfig.MAX_SUPERVISOR_CAPACITY,
    )
    reason: str = Field(..., min_length=1, max_length=500)

    @field_validator('reason')
    @classmethod
    def reason_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError('reason must not be blank')
        return value


# ============================================================================
# Response Schemas
# ============================================================================

class SupervisorOut(Schema):
    """Supervisor with capacity counters and derived availability."""
    id: str
    full_name: str = ""
    max_capacity: int
    current_capacity: int
    availability_status: Literal['available', 'limited', 'unavailable']
    is_active: bool = True


class ErrorDetail(Schema):
    code: str
    category: str
    message: str
    details: dict | None = None
    request_id: str | None = None


class ErrorResponse(Schema):
    """Error envelope produced by ServiceResult.to_dict() on failure."""
    error: ErrorDetail
