"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class InvariantViolationException(DomainException):
    """
    Raised when an issue record breaks an SLA invariant.

    Fatal to the processing of that single issue, never to a whole sweep.
    """

    def __init__(self, issue_id: str, reason: str, details: Optional[dict] = None):
        self.issue_id = issue_id
        self.reason = reason
        super().__init__(
            f"Invariant violated for issue {issue_id}: {reason}",
            details or {"issue_id": issue_id, "reason": reason}
        )


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class StoreUnavailableException(RepositoryException):
    """The issue store failed or timed out."""

    def __init__(self, operation: str, message: str, details: Optional[dict] = None):
        self.operation = operation
        super().__init__(f"Issue store unavailable during {operation}: {message}", details)


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class DispatchFailureException(ExternalServiceException):
    """Exception for notification dispatch failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Notification Dispatcher", message, details)
