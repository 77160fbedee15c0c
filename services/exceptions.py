# -*- coding: utf-8 -*-
"""Custom exceptions for the import pipeline."""

from typing import List, Optional


class PipelineException(Exception):
    """Base class for pipeline errors."""

    def __init__(self, message: str, context: str = None):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self):
        return self.message


class IntegrityFailure(PipelineException):
    """Checksum or signature mismatch. The package is rejected before staging."""

    def __init__(self, message: str, package_id: str = None, kind: str = "checksum",
                 expected: str = None, actual: str = None, context: str = None):
        super().__init__(message, context)
        self.package_id = package_id
        self.kind = kind
        self.expected = expected
        self.actual = actual


class ContainerCorrupt(PipelineException):
    """Package container cannot be opened or has no manifest table."""

    def __init__(self, message: str, path: str = None, context: str = None):
        super().__init__(message, context)
        self.path = path


class ManifestInvalid(PipelineException):
    """A required manifest field is missing or unparseable."""

    def __init__(self, message: str, field: str = None, value: str = None,
                 context: str = None):
        super().__init__(message, context)
        self.field = field
        self.value = value


class VocabularyIncompatible(PipelineException):
    """Major vocabulary version mismatch (only raised when policy blocks)."""

    def __init__(self, message: str, issues: List[str] = None, context: str = None):
        super().__init__(message, context)
        self.issues = issues or []


class ValidationException(PipelineException):
    """Exception raised for invalid input to a pipeline operation."""

    def __init__(self, message: str, field: str = None,
                 errors: list = None, context: str = None):
        super().__init__(message, context)
        self.field = field
        self.errors = errors or []


class InvalidStateTransition(PipelineException):
    """A status change that the state machine does not allow."""

    def __init__(self, entity: str, current, target, context: str = None):
        current_name = getattr(current, "value", current)
        target_name = getattr(target, "value", target)
        super().__init__(
            f"{entity}: cannot move from {current_name} to {target_name}", context
        )
        self.entity = entity
        self.current = current
        self.target = target


class UnresolvedConflict(PipelineException):
    """Conflicts still open for the package; commit is blocked."""

    def __init__(self, package_id: str, unresolved_count: int, context: str = None):
        super().__init__(
            f"Cannot commit: {unresolved_count} unresolved conflict(s) remain "
            f"for package {package_id}",
            context,
        )
        self.package_id = package_id
        self.unresolved_count = unresolved_count


class CommitPreconditionFailed(PipelineException):
    """Package is not in a committable state."""

    def __init__(self, message: str, package_id: str = None, context: str = None):
        super().__init__(message, context)
        self.package_id = package_id


class CommitFailure(PipelineException):
    """Commit transaction rolled back."""

    def __init__(self, message: str, package_id: str = None,
                 failed_entity_ids: Optional[List[str]] = None,
                 original_error: Exception = None, context: str = None):
        super().__init__(message, context)
        self.package_id = package_id
        self.failed_entity_ids = failed_entity_ids or []
        self.original_error = original_error


class TransferFailure(PipelineException):
    """Assignment transfer exhausted its retries."""

    def __init__(self, message: str, assignment_id: str = None,
                 retry_count: int = 0, context: str = None):
        super().__init__(message, context)
        self.assignment_id = assignment_id
        self.retry_count = retry_count


class PackageNotFound(PipelineException):
    """No import package with the given id."""

    def __init__(self, package_id: str, context: str = None):
        super().__init__(f"Import package '{package_id}' was not found", context)
        self.package_id = package_id


class ConflictNotFound(PipelineException):
    """No conflict with the given id."""

    def __init__(self, conflict_id: str, context: str = None):
        super().__init__(f"Conflict '{conflict_id}' was not found", context)
        self.conflict_id = conflict_id


class AssignmentNotFound(PipelineException):
    """No building assignment with the given id."""

    def __init__(self, assignment_id: str, context: str = None):
        super().__init__(f"Assignment '{assignment_id}' was not found", context)
        self.assignment_id = assignment_id


class PackageStoreError(PipelineException):
    """File operation on a stored package failed after retries."""

    def __init__(self, message: str, path: str = None, attempts: int = 0,
                 original_error: Exception = None, context: str = None):
        super().__init__(message, context)
        self.path = path
        self.attempts = attempts
        self.original_error = original_error


class NetworkException(PipelineException):
    """Exception raised for network/connection errors."""

    def __init__(self, message: str, original_error: Exception = None,
                 context: str = None):
        super().__init__(message, context)
        self.original_error = original_error


class ApiException(PipelineException):
    """Exception raised for backend API errors."""

    def __init__(self, message: str, status_code: int = None,
                 response_data: dict = None, context: str = None):
        super().__init__(message, context)
        self.status_code = status_code
        self.response_data = response_data or {}

    def __str__(self):
        if self.status_code:
            return f"[{self.status_code}] {self.message}"
        return self.message
