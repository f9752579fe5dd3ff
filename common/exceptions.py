"""
Custom exception hierarchy for the matching engine.

Every expected business outcome that is not a success is modelled as one of
these exceptions. They are raised inside a transaction body (which aborts the
transaction without writing anything) and converted into a failed
``ServiceResult`` at the service boundary.

Exception Hierarchy:
    MatchingError (base)
    ├── MatchingValidationError
    │   ├── SelfReferenceError
    │   ├── InvalidCapacityError
    │   └── InvalidTransitionError
    ├── MatchingConflictError
    │   ├── DuplicateApplicationError
    │   ├── DuplicatePendingError
    │   ├── AlreadyMatchedError
    │   ├── CapacityExceededError
    │   └── TransactionConflictError
    ├── ForbiddenError
    └── MatchingStateError
        ├── NotPendingError
        └── NotFoundError

Usage Examples:
    >>> raise NotFoundError('applications', 'app-1')
    NotFoundError: applications not found: app-1

    >>> raise CapacityExceededError('sup-1', current_capacity=5, max_capacity=5)
    CapacityExceededError: Supervisor sup-1 has no remaining capacity (5/5)
"""

from typing import Any, Dict, Optional


class MatchingError(Exception):
    """Base exception for all matching engine operations.

    Attributes:
        category: Coarse error class ('validation', 'conflict',
            'authorization' or 'state') used by callers to pick a response
            status without inspecting the concrete type.
    """

    category = 'error'

    def details(self) -> Dict[str, Any]:
        """Structured, JSON-safe context for API error payloads."""
        return {}


class MatchingValidationError(MatchingError):
    """The command is well-formed but violates a domain rule."""

    category = 'validation'


class MatchingConflictError(MatchingError):
    """The command conflicts with the current state of shared resources."""

    category = 'conflict'


class MatchingStateError(MatchingError):
    """The target entity is missing or not in the required state."""

    category = 'state'


class ForbiddenError(MatchingError):
    """Raised when the acting user is not the party required by the operation.

    Attributes:
        actor_id: The actor that attempted the operation
        action: Short description of what was attempted
    """

    category = 'authorization'

    def __init__(self, actor_id: str, action: str):
        self.actor_id = actor_id
        self.action = action
        super().__init__(f"Actor {actor_id} is not allowed to {action}")

    def details(self) -> Dict[str, Any]:
        return {'actor_id': self.actor_id, 'action': self.action}


class SelfReferenceError(MatchingValidationError):
    """Raised when an entity would be paired or linked with itself.

    Example:
        >>> if requester_id == target_id:
        ...     raise SelfReferenceError(requester_id, 'partnership request')
    """

    def __init__(self, entity_id: str, relation: str):
        self.entity_id = entity_id
        self.relation = relation
        super().__init__(f"{entity_id} cannot be the target of its own {relation}")

    def details(self) -> Dict[str, Any]:
        return {'entity_id': self.entity_id, 'relation': self.relation}


class InvalidCapacityError(MatchingValidationError):
    """Raised when a capacity override is out of bounds or incomplete.

    Attributes:
        supervisor_id: Supervisor whose capacity was being changed
        requested: The rejected value (None when the reason was missing)
        reason: Human-readable explanation
    """

    def __init__(self, supervisor_id: str, requested: Optional[int], reason: str):
        self.supervisor_id = supervisor_id
        self.requested = requested
        self.reason = reason
        super().__init__(f"Invalid capacity {requested} for supervisor {supervisor_id}: {reason}")

    def details(self) -> Dict[str, Any]:
        return {
            'supervisor_id': self.supervisor_id,
            'requested': self.requested,
            'reason': self.reason,
        }


class InvalidTransitionError(MatchingValidationError):
    """Raised when a status change is not allowed by the state machine."""

    def __init__(self, entity: str, current: str, requested: str):
        self.entity = entity
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move {entity} from '{current}' to '{requested}'")

    def details(self) -> Dict[str, Any]:
        return {'entity': self.entity, 'current': self.current, 'requested': self.requested}


class DuplicateApplicationError(MatchingConflictError):
    """Raised when the student already has an active application to the supervisor."""

    def __init__(self, student_id: str, supervisor_id: str, existing_id: str):
        self.student_id = student_id
        self.supervisor_id = supervisor_id
        self.existing_id = existing_id
        super().__init__(
            f"Student {student_id} already has an active application "
            f"to supervisor {supervisor_id} ({existing_id})"
        )

    def details(self) -> Dict[str, Any]:
        return {
            'student_id': self.student_id,
            'supervisor_id': self.supervisor_id,
            'existing_application_id': self.existing_id,
        }


class DuplicatePendingError(MatchingConflictError):
    """Raised when a pending partnership request already exists for the pair.

    Attributes:
        existing_id: The pending request that blocks the new one
        is_reverse: True when the other party sent the existing request
    """

    def __init__(self, requester_id: str, target_id: str, existing_id: str, is_reverse: bool = False):
        self.requester_id = requester_id
        self.target_id = target_id
        self.existing_id = existing_id
        self.is_reverse = is_reverse
        if is_reverse:
            message = f"{target_id} has already sent a pending request to {requester_id}"
        else:
            message = f"A pending request from {requester_id} to {target_id} already exists"
        super().__init__(message)

    def details(self) -> Dict[str, Any]:
        return {
            'requester_id': self.requester_id,
            'target_id': self.target_id,
            'existing_request_id': self.existing_id,
            'is_reverse': self.is_reverse,
        }


class AlreadyMatchedError(MatchingConflictError):
    """Raised when the participant or project already has its one match."""

    def __init__(self, subject_id: str, matched_with: Optional[str] = None):
        self.subject_id = subject_id
        self.matched_with = matched_with
        if matched_with:
            message = f"{subject_id} is already matched with {matched_with}"
        else:
            message = f"{subject_id} is already matched"
        super().__init__(message)

    def details(self) -> Dict[str, Any]:
        return {'subject_id': self.subject_id, 'matched_with': self.matched_with}


class CapacityExceededError(MatchingConflictError):
    """Raised when an allocation would push current_capacity above max_capacity."""

    def __init__(self, supervisor_id: str, current_capacity: int, max_capacity: int):
        self.supervisor_id = supervisor_id
        self.current_capacity = current_capacity
        self.max_capacity = max_capacity
        super().__init__(
            f"Supervisor {supervisor_id} has no remaining capacity "
            f"({current_capacity}/{max_capacity})"
        )

    def details(self) -> Dict[str, Any]:
        return {
            'supervisor_id': self.supervisor_id,
            'current_capacity': self.current_capacity,
            'max_capacity': self.max_capacity,
        }


class TransactionConflictError(MatchingConflictError):
    """Raised when a transaction keeps conflicting after all retry attempts.

    The whole command may be retried by the caller.
    """

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Transaction aborted after {attempts} conflicting attempts")

    def details(self) -> Dict[str, Any]:
        return {'attempts': self.attempts}


class NotPendingError(MatchingStateError):
    """Raised when acting on a request/application that left the required state."""

    def __init__(self, entity: str, entity_id: str, status: str):
        self.entity = entity
        self.entity_id = entity_id
        self.status = status
        super().__init__(f"{entity} {entity_id} is '{status}', not pending")

    def details(self) -> Dict[str, Any]:
        return {'entity': self.entity, 'entity_id': self.entity_id, 'status': self.status}


class NotFoundError(MatchingStateError):
    """Raised when a document cannot be found in its collection."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection} not found: {doc_id}")

    def details(self) -> Dict[str, Any]:
        return {'collection': self.collection, 'id': self.doc_id}


# Error code mapping for API responses
ERROR_CODES = {
    SelfReferenceError: 'SELF_REFERENCE',
    InvalidCapacityError: 'INVALID_CAPACITY',
    InvalidTransitionError: 'INVALID_TRANSITION',
    DuplicateApplicationError: 'DUPLICATE_APPLICATION',
    DuplicatePendingError: 'DUPLICATE_PENDING',
    AlreadyMatchedError: 'ALREADY_MATCHED',
    CapacityExceededError: 'CAPACITY_EXCEEDED',
    TransactionConflictError: 'CONFLICT',
    ForbiddenError: 'FORBIDDEN',
    NotPendingError: 'NOT_PENDING',
    NotFoundError: 'NOT_FOUND',
}


def get_error_code(exception: MatchingError) -> str:
    """Get standardized error code for an exception.

    Example:
        >>> get_error_code(NotFoundError('projects', 'p-1'))
        'NOT_FOUND'
    """
    return ERROR_CODES.get(type(exception), 'MATCHING_ERROR')


def to_error_dict(exception: MatchingError, request_id: Optional[str] = None) -> Dict:
    """Convert exception to standardized error dictionary for API responses.

    Example:
        >>> to_error_dict(NotFoundError('projects', 'p-1'), 'req-123')
        {
            'error': {
                'code': 'NOT_FOUND',
                'category': 'state',
                'message': 'projects not found: p-1',
                'details': {'collection': 'projects', 'id': 'p-1'},
                'request_id': 'req-123'
            }
        }
    """
    error_dict = {
        'error': {
            'code': get_error_code(exception),
            'category': exception.category,
            'message': str(exception),
        }
    }

    details = exception.details()
    if details:
        error_dict['error']['details'] = details

    if request_id:
        error_dict['error']['request_id'] = request_id

    return error_dict
