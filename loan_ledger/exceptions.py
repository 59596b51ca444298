"""Exceptions raised by the loan ledger core."""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base exception for all ledger errors."""
    
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
    
    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class ValidationError(LedgerError, ValueError):
    """Raised when user input violates a business rule. Nothing is mutated."""
    pass


class ConsistencyError(LedgerError):
    """Describes drift between a cached value and its recomputed value.
    
    The recomputed value is always authoritative; this error is logged and
    reported, not raised to callers.
    """
    
    def __init__(self, entity: str, entity_id: Any, field: str, cached, recomputed):
        details = {
            'entity': entity,
            'entity_id': entity_id,
            'field': field,
            'cached': str(cached),
            'recomputed': str(recomputed)
        }
        message = f"{entity} {entity_id}: cached {field} {cached} differs from recomputed {recomputed}"
        super().__init__(message, details)


class StorageError(LedgerError):
    """Raised when the storage collaborator fails mid-pipeline."""
    
    def __init__(self, step: str, cause: Optional[BaseException] = None,
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details['step'] = step
        message = f"Storage failure during '{step}'"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message, details)
        self.step = step


class NotFoundError(LedgerError):
    """Raised when a referenced loan, payment or invoice does not exist."""
    
    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity.capitalize()} '{entity_id}' not found",
            {'entity': entity, 'entity_id': entity_id}
        )
        self.entity = entity
        self.entity_id = entity_id
