"""
Typed records for the documents the matching engine reads and writes.

Each record is a dataclass mirroring one collection's document shape, with
``from_snapshot()`` to decode a stored document and ``to_document()`` /
``document_fields()`` to encode full or partial writes. Statuses are
``TextChoices`` enums so transitions are table lookups, not string compares.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, ClassVar

from django.db import models
from django.utils.dateparse import parse_datetime

from common.config import Collections
from store.base import DocumentSnapshot


class AvailabilityStatus(models.TextChoices):
    """Supervisor availability (derived from capacity, never stored)."""

    AVAILABLE = "available", "Available"
    LIMITED = "limited", "Limited"
    UNAVAILABLE = "unavailable", "Unavailable"


class PartnershipStatus(models.TextChoices):
    """Student partnership status."""

    NONE = "none", "None"
    PENDING_SENT = "pending_sent", "Pending (sent)"
    PENDING_RECEIVED = "pending_received", "Pending (received)"
    PAIRED = "paired", "Paired"


class ApplicationStatus(models.TextChoices):
    """Application status."""

    PENDING = "pending", "Pending"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"
    REVISION_REQUESTED = "revision_requested", "Revision requested"


ACTIVE_APPLICATION_STATUSES = (
    ApplicationStatus.PENDING,
    ApplicationStatus.APPROVED,
    ApplicationStatus.REVISION_REQUESTED,
)


class ProjectStatus(models.TextChoices):
    """Project lifecycle status."""

    PENDING_APPROVAL = "pending_approval", "Pending approval"
    APPROVED = "approved", "Approved"
    IN_PROGRESS = "in_progress", "In progress"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


TERMINAL_PROJECT_STATUSES = frozenset({ProjectStatus.COMPLETED, ProjectStatus.CANCELLED})


class RequestStatus(models.TextChoices):
    """Partnership request status (student and supervisor variants)."""

    PENDING = "pending", "Pending"
    ACCEPTED = "accepted", "Accepted"
    REJECTED = "rejected", "Rejected"
    CANCELLED = "cancelled", "Cancelled"


class RespondAction(models.TextChoices):
    """Target's answer to a partnership request."""

    ACCEPT = "accept", "Accept"
    REJECT = "reject", "Reject"


class PartnershipEvent(models.TextChoices):
    """Event types recorded in the partnership audit trail."""

    REQUEST_CREATED = "request_created", "Request created"
    REQUEST_ACCEPTED = "request_accepted", "Request accepted"
    REQUEST_REJECTED = "request_rejected", "Request rejected"
    REQUEST_CANCELLED = "request_cancelled", "Request cancelled"
    STUDENTS_PAIRED = "students_paired", "Students paired"
    STUDENTS_UNPAIRED = "students_unpaired", "Students unpaired"
    CO_SUPERVISOR_ADDED = "co_supervisor_added", "Co-supervisor added"
    CO_SUPERVISOR_REMOVED = "co_supervisor_removed", "Co-supervisor removed"
    PROJECT_STATUS_CHANGED = "project_status_changed", "Project status changed"


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    return value


def _decode_timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return parse_datetime(value)


class DocumentRecord:
    """Shared encode/decode behaviour for record dataclasses."""

    collection: ClassVar[str] = ""
    enum_fields: ClassVar[dict[str, type]] = {}
    timestamp_fields: ClassVar[tuple[str, ...]] = ()

    @classmethod
    def from_snapshot(cls, snapshot: DocumentSnapshot):
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in snapshot.data.items() if key in known}
        values["id"] = snapshot.id
        for name, enum_cls in cls.enum_fields.items():
            if values.get(name) is not None:
                values[name] = enum_cls(values[name])
        for name in cls.timestamp_fields:
            if name in values:
                values[name] = _decode_timestamp(values[name])
        return cls(**values)

    def to_document(self) -> dict[str, Any]:
        """Full document body (everything but the id)."""
        return {f.name: _encode(getattr(self, f.name)) for f in fields(self) if f.name != "id"}

    def document_fields(self, *names: str) -> dict[str, Any]:
        """Encoded subset of fields, for partial updates."""
        return {name: _encode(getattr(self, name)) for name in names}

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, **self.to_document()}


@dataclass
class SupervisorRecord(DocumentRecord):
    collection: ClassVar[str] = Collections.SUPERVISORS
    timestamp_fields: ClassVar[tuple[str, ...]] = ("updated_at",)

    id: str
    full_name: str = ""
    max_capacity: int = 0
    current_capacity: int = 0
    is_active: bool = True
    updated_at: datetime | None = None

    @property
    def remaining_capacity(self) -> int:
        return max(0, self.max_capacity - self.current_capacity)

    @property
    def availability_status(self) -> AvailabilityStatus:
        from .capacity import derive_availability

        return derive_availability(self)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["availability_status"] = self.availability_status.value
        return data


@dataclass
class StudentRecord(DocumentRecord):
    collection: ClassVar[str] = Collections.STUDENTS
    enum_fields: ClassVar[dict[str, type]] = {"partnership_status": PartnershipStatus}
    timestamp_fields: ClassVar[tuple[str, ...]] = ("updated_at",)

    id: str
    full_name: str = ""
    partnership_status: PartnershipStatus = PartnershipStatus.NONE
    partner_id: str | None = None
    updated_at: datetime | None = None

    @property
    def is_paired(self) -> bool:
        return self.partner_id is not None or self.partnership_status == PartnershipStatus.PAIRED

    def is_partnered_with(self, other_id: str) -> bool:
        return self.partnership_status == PartnershipStatus.PAIRED and self.partner_id == other_id


@dataclass
class ApplicationRecord(DocumentRecord):
    collection: ClassVar[str] = Collections.APPLICATIONS
    enum_fields: ClassVar[dict[str, type]] = {"status": ApplicationStatus}
    timestamp_fields: ClassVar[tuple[str, ...]] = (
        "date_applied",
        "last_updated",
        "response_date",
        "resubmitted_date",
    )

    id: str
    student_id: str
    supervisor_id: str
    project_title: str = ""
    project_description: str = ""
    status: ApplicationStatus = ApplicationStatus.PENDING
    partner_id: str | None = None
    applied_by_student_id: str | None = None
    linked_application_id: str | None = None
    is_lead_application: bool = True
    holds_slot: bool = False
    supervisor_feedback: str | None = None
    date_applied: datetime | None = None
    last_updated: datetime | None = None
    response_date: datetime | None = None
    resubmitted_date: datetime | None = None

    def is_owned_by(self, student_id: str) -> bool:
        return student_id in (self.student_id, self.applied_by_student_id)


@dataclass
class ProjectRecord(DocumentRecord):
    collection: ClassVar[str] = Collections.PROJECTS
    enum_fields: ClassVar[dict[str, type]] = {"status": ProjectStatus}
    timestamp_fields: ClassVar[tuple[str, ...]] = ("created_at", "updated_at", "completed_at")

    id: str
    supervisor_id: str
    title: str = ""
    description: str = ""
    co_supervisor_id: str | None = None
    co_supervisor_name: str | None = None
    student_ids: list[str] = field(default_factory=list)
    status: ProjectStatus = ProjectStatus.IN_PROGRESS
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PROJECT_STATUSES

    def is_supervised_by(self, supervisor_id: str) -> bool:
        return supervisor_id in (self.supervisor_id, self.co_supervisor_id)


@dataclass
class PartnershipRequestRecord(DocumentRecord):
    collection: ClassVar[str] = Collections.PARTNERSHIP_REQUESTS
    enum_fields: ClassVar[dict[str, type]] = {"status": RequestStatus}
    timestamp_fields: ClassVar[tuple[str, ...]] = ("created_at", "responded_at")

    id: str
    requester_id: str
    target_id: str
    status: RequestStatus = RequestStatus.PENDING
    created_at: datetime | None = None
    responded_at: datetime | None = None


@dataclass
class SupervisorPartnershipRequestRecord(PartnershipRequestRecord):
    collection: ClassVar[str] = Collections.SUPERVISOR_PARTNERSHIP_REQUESTS

    project_id: str = ""


@dataclass
class CapacityChangeLogRecord(DocumentRecord):
    collection: ClassVar[str] = Collections.CAPACITY_CHANGES
    timestamp_fields: ClassVar[tuple[str, ...]] = ("timestamp",)

    id: str
    supervisor_id: str
    old_max_capacity: int
    new_max_capacity: int
    reason: str
    actor_id: str
    timestamp: datetime | None = None


@dataclass
class PartnershipAuditLogRecord(DocumentRecord):
    collection: ClassVar[str] = Collections.PARTNERSHIP_AUDIT_LOGS
    enum_fields: ClassVar[dict[str, type]] = {"event_type": PartnershipEvent}
    timestamp_fields: ClassVar[tuple[str, ...]] = ("timestamp",)

    id: str
    event_type: PartnershipEvent
    actor_id: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime | None = None
