"""
Error types for the dedup engine.

Fingerprinting and scoring never raise on incomplete records; these types
cover the seams where failure is real: the record store, input coercion and
whole-project reconciliation.
"""

from typing import Optional, Any, Dict


class DedupError(Exception):
    """
    Base exception for all dedup-engine errors.

    Carries a ``details`` mapping for structured logging and CLI output.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize dedup error.

        Args:
            message: Error message
            details: Optional detailed error context
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class StoreError(DedupError):
    """
    Raised when the record store cannot be read or written.

    Always propagated to the caller; the engine assumes nothing about
    partially written state.
    """

    def __init__(self, message: str,
                 operation: str = 'general',
                 project_id: Optional[str] = None,
                 path: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        """
        Initialize store error.

        Args:
            message: Error message
            operation: Store operation that failed ('read', 'write', 'decode', ...)
            project_id: Project scope of the operation, None for all projects
            path: Backing file path if applicable
            details: Additional error context
        """
        super().__init__(message, details)
        self.operation = operation
        self.project_id = project_id
        self.path = path

        self.details.update({
            'operation': operation,
            'project_id': project_id,
            'path': path
        })


class MalformedRecordError(DedupError):
    """Raised when an incoming item cannot be coerced into a record at all."""

    def __init__(self, message: str,
                 record_index: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.record_index = record_index
        self.details.update({'record_index': record_index})


class ReconciliationError(DedupError):
    """Raised when a reconciliation run fails for a reason other than the store."""

    def __init__(self, message: str,
                 project_id: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.project_id = project_id
        self.details.update({'project_id': project_id})


def is_store_error(error: Exception) -> bool:
    """Check if error originated in the record store."""
    return isinstance(error, StoreError)


def is_write_failure(error: Exception) -> bool:
    """Check if error is a failed store write."""
    return isinstance(error, StoreError) and error.operation == 'write'
