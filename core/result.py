"""Result type returned by runners, services and operations.

Expected failures (nonzero exits, missing toolchain, bad project dir) travel
as ``Result.fail(error)`` instead of raised exceptions.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from .exceptions import ESPCLIError

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """Standard result structure.

    Attributes:
        success: Whether the call succeeded.
        data: Result data payload.
        error: Error if the call failed.
        meta: Additional metadata (timing, operation id, ...).
    """

    success: bool
    data: T | None = None
    error: ESPCLIError | None = None
    meta: dict = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None, **meta) -> "Result":
        return cls(success=True, data=data, meta=dict(meta))

    @classmethod
    def fail(cls, error: ESPCLIError, **meta) -> "Result":
        return cls(success=False, error=error, meta=dict(meta))

    @property
    def error_message(self) -> str:
        """Formatted error message, empty on success."""
        return str(self.error) if self.error else ""

    def unwrap(self) -> T:
        """Return the data or raise the carried error.

        Raises:
            ESPCLIError: If the result is a failure.
        """
        if not self.success:
            raise self.error
        return self.data

    def __bool__(self) -> bool:
        return self.success
