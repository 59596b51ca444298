"""Result type for exception-free validation outcomes.

Callers that must not deal with exceptions (form validation, previews) can
ask the engines for a ``Result`` instead of catching ``LedgerError``.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, TypeVar

from .exceptions import LedgerError, NotFoundError, StorageError, ValidationError

T = TypeVar('T')


class ErrorType:
    """Standard error type constants."""
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    STORAGE = "STORAGE"


@dataclass
class Result(Generic[T]):
    """Represents the outcome of an operation.
    
    Attributes:
        success: Whether the operation succeeded.
        value: The return value on success, None on failure.
        error: Error message on failure, None on success.
        error_type: Category of error (see ``ErrorType``).
        details: Structured error details (e.g. the maximum allowed amount).
    """
    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    
    @classmethod
    def ok(cls, value: T = None) -> 'Result[T]':
        """Create a successful result."""
        return cls(success=True, value=value)
    
    @classmethod
    def fail(cls, error: str, error_type: str = None,
             details: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """Create a failure result."""
        return cls(success=False, error=error, error_type=error_type,
                   details=details or {})
    
    @classmethod
    def from_error(cls, exc: LedgerError) -> 'Result[T]':
        """Convert a ledger exception into a failure result."""
        if isinstance(exc, ValidationError):
            error_type = ErrorType.VALIDATION
        elif isinstance(exc, NotFoundError):
            error_type = ErrorType.NOT_FOUND
        elif isinstance(exc, StorageError):
            error_type = ErrorType.STORAGE
        else:
            error_type = None
        return cls.fail(exc.message, error_type, exc.details)
    
    def __bool__(self) -> bool:
        return self.success
    
    def unwrap(self) -> T:
        """Get the value, raising ValueError if the operation failed."""
        if not self.success:
            raise ValueError(f"Result unwrap failed: {self.error}")
        return self.value
    
    def unwrap_or(self, default: T) -> T:
        """Get the value or a default if the operation failed."""
        return self.value if self.success else default
