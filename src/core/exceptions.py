"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. The escalation sweep catches
the repository and external-service errors per incident; nothing here is
allowed to escape a sweep.
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


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class StoreReadException(RepositoryException):
    """Record store could not be read."""


class StoreWriteException(RepositoryException):
    """Record store rejected or failed a write."""


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


class NotificationException(ExternalServiceException):
    """Exception for notification gateway failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Notification Gateway", message, details)


class InvalidTransitionException(DomainException):
    """Raised by the workflow gate when a status change is not in the graph."""

    def __init__(
        self,
        kind: str,
        record_id: str,
        from_status: str,
        to_status: str,
        reason: str
    ):
        self.kind = kind
        self.record_id = record_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            reason,
            {
                "kind": kind,
                "record_id": record_id,
                "from_status": from_status,
                "to_status": to_status,
            }
        )
