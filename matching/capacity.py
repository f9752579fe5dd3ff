"""
Capacity ledger.

Pure rules for a supervisor's supervision slots. Every function takes the
supervisor record read inside the caller's transaction and returns a new
record; writing it back is the caller's job. Nothing here opens a
transaction.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from common.config import MatchingConfig
from common.exceptions import CapacityExceededError, InvalidCapacityError

from .records import AvailabilityStatus, SupervisorRecord

logger = logging.getLogger(__name__)


def remaining_capacity(supervisor: SupervisorRecord) -> int:
    return max(0, supervisor.max_capacity - supervisor.current_capacity)


def can_allocate(supervisor: SupervisorRecord, by: int = MatchingConfig.DEFAULT_ALLOCATION_UNITS) -> bool:
    return supervisor.current_capacity + by <= supervisor.max_capacity


def try_allocate(
    supervisor: SupervisorRecord,
    by: int = MatchingConfig.DEFAULT_ALLOCATION_UNITS,
) -> SupervisorRecord:
    """Reserve ``by`` slots.

    Raises:
        CapacityExceededError: The allocation would exceed max_capacity
    """
    if not can_allocate(supervisor, by):
        raise CapacityExceededError(
            supervisor.id,
            current_capacity=supervisor.current_capacity,
            max_capacity=supervisor.max_capacity,
        )
    return replace(supervisor, current_capacity=supervisor.current_capacity + by)


def release(
    supervisor: SupervisorRecord,
    by: int = MatchingConfig.DEFAULT_ALLOCATION_UNITS,
) -> SupervisorRecord:
    """Free ``by`` slots, clamping at zero.

    Releasing more than is allocated means the stored counter drifted from the
    allocations that exist. That is logged as a data-integrity fault but never
    raised: a release always runs as part of an unwind that must complete.
    """
    new_capacity = supervisor.current_capacity - by
    if new_capacity < 0:
        logger.error(
            f"Capacity underflow for supervisor {supervisor.id}: "
            f"releasing {by} from {supervisor.current_capacity}; clamping to 0"
        )
        new_capacity = 0
    return replace(supervisor, current_capacity=new_capacity)


def derive_availability(supervisor: SupervisorRecord) -> AvailabilityStatus:
    if supervisor.current_capacity >= supervisor.max_capacity:
        return AvailabilityStatus.UNAVAILABLE
    if remaining_capacity(supervisor) <= MatchingConfig.LIMITED_AVAILABILITY_THRESHOLD:
        return AvailabilityStatus.LIMITED
    return AvailabilityStatus.AVAILABLE


def validate_max_capacity(supervisor: SupervisorRecord, new_max_capacity: int) -> None:
    """Check an admin override against the capacity bounds.

    Raises:
        InvalidCapacityError: Negative, above the ceiling, or below the
            slots already allocated
    """
    if new_max_capacity < MatchingConfig.MIN_SUPERVISOR_CAPACITY:
        raise InvalidCapacityError(supervisor.id, new_max_capacity, 'Maximum capacity cannot be negative')
    if new_max_capacity > MatchingConfig.MAX_SUPERVISOR_CAPACITY:
        raise InvalidCapacityError(
            supervisor.id,
            new_max_capacity,
            f'Maximum capacity cannot exceed {MatchingConfig.MAX_SUPERVISOR_CAPACITY}',
        )
    if new_max_capacity < supervisor.current_capacity:
        raise InvalidCapacityError(
            supervisor.id,
            new_max_capacity,
            f'Maximum capacity cannot be less than current capacity ({supervisor.current_capacity})',
        )
