"""
Result envelope returned by every matching service operation.

Service methods never raise for expected business conditions: the
``service_operation`` decorator turns a ``MatchingError`` raised anywhere in
the operation into a failed ``ServiceResult``. Anything else is a bug and
propagates.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any, Generic, TypeVar

from common.exceptions import MatchingError, get_error_code, to_error_dict

T = TypeVar('T')
F = TypeVar('F', bound=Callable[..., object])
logger = logging.getLogger(__name__)


@dataclass
class ServiceResult(Generic[T]):
    """Success payload or typed failure of one operation."""

    success: bool
    data: T | None = None
    error: MatchingError | None = None
    message: str = ''

    @classmethod
    def ok(cls, data: T | None = None, message: str = '') -> ServiceResult[T]:
        return cls(success=True, data=data, message=message)

    @classmethod
    def failure(cls, error: MatchingError) -> ServiceResult[T]:
        return cls(success=False, error=error, message=str(error))

    @property
    def code(self) -> str | None:
        """Error code of a failed result, None on success."""
        if self.error is None:
            return None
        return get_error_code(self.error)

    def unwrap(self) -> T:
        """Return the payload or re-raise the failure."""
        if self.error is not None:
            raise self.error
        return self.data

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        if self.error is not None:
            return to_error_dict(self.error, request_id)
        payload = self.data.to_dict() if hasattr(self.data, 'to_dict') else self.data
        return {'success': True, 'message': self.message, 'data': payload}


def service_operation(func: F) -> F:
    """Wrap a service method so business failures become failed results.

    The wrapped method returns its payload; the decorator wraps it into
    ``ServiceResult.ok``.
    """

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        operation = f'{type(self).__name__}.{func.__name__}'
        try:
            data = func(self, *args, **kwargs)
        except MatchingError as exc:
            logger.warning(f'{operation} failed [{get_error_code(exc)}]: {exc}')
            return ServiceResult.failure(exc)
        return ServiceResult.ok(data)

    return wrapper  # type: ignore[return-value]
