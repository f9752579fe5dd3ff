"""
Configuration constants for the matching engine.

This module centralizes the capacity rules, transaction retry defaults and
collection names used by the store and the matching services.

Usage:
    >>> from common.config import MatchingConfig, Collections
    >>> threshold = MatchingConfig.LIMITED_AVAILABILITY_THRESHOLD
    >>> Collections.SUPERVISORS
    'supervisors'
"""


class MatchingConfig:
    """Business rule constants for capacity and matching.

    Values here are part of the domain contract; changing them changes what
    the engine accepts, not just how fast it runs.
    """

    # ========== Capacity Configuration ==========

    LIMITED_AVAILABILITY_THRESHOLD: int = 1
    """Remaining slots at or below which a supervisor shows as 'limited'.

    A supervisor with zero remaining slots is always 'unavailable'.
    """

    MAX_SUPERVISOR_CAPACITY: int = 50
    """Upper bound accepted by an admin capacity override."""

    MIN_SUPERVISOR_CAPACITY: int = 0
    """Lower bound accepted by an admin capacity override.

    Overrides are additionally bounded by the supervisor's current_capacity.
    """

    DEFAULT_ALLOCATION_UNITS: int = 1
    """Slots consumed by one approved application or one co-supervision."""


class TransactionConfig:
    """Default retry policy for document store transactions.

    The Django settings (DOCUMENT_STORE['OPTIONS']) override these per
    deployment; the in-memory store used by tests takes them directly.
    """

    MAX_ATTEMPTS: int = 5
    """Attempts before a conflicting transaction fails with a Conflict.

    Each conflict implies another writer committed in between, so N
    concurrent writers on one document need at most N attempts.
    """

    BASE_DELAY: float = 0.05
    """Backoff before the second attempt, in seconds (doubles per attempt)."""

    MAX_DELAY: float = 1.0
    """Upper bound for a single backoff sleep, in seconds."""

    JITTER: float = 0.01
    """Maximum random seconds added to each backoff sleep."""


class Collections:
    """Document collection names.

    WARNING: Renaming a collection orphans documents stored under the old name.
    """

    SUPERVISORS: str = 'supervisors'
    STUDENTS: str = 'students'
    APPLICATIONS: str = 'applications'
    PROJECTS: str = 'projects'
    PARTNERSHIP_REQUESTS: str = 'partnership_requests'
    SUPERVISOR_PARTNERSHIP_REQUESTS: str = 'supervisor_partnership_requests'
    CAPACITY_CHANGES: str = 'capacity_changes'
    PARTNERSHIP_AUDIT_LOGS: str = 'partnership_audit_logs'


def get_all_config() -> dict:
    """Get all configuration as dictionary for debugging/logging."""
    return {
        'matching': {
            'limited_threshold': MatchingConfig.LIMITED_AVAILABILITY_THRESHOLD,
            'capacity_range': (
                MatchingConfig.MIN_SUPERVISOR_CAPACITY,
                MatchingConfig.MAX_SUPERVISOR_CAPACITY,
            ),
            'allocation_units': MatchingConfig.DEFAULT_ALLOCATION_UNITS,
        },
        'transaction': {
            'max_attempts': TransactionConfig.MAX_ATTEMPTS,
            'base_delay': TransactionConfig.BASE_DELAY,
            'max_delay': TransactionConfig.MAX_DELAY,
            'jitter': TransactionConfig.JITTER,
        },
    }
