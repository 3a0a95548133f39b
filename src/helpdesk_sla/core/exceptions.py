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


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


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
    """Exception for configuration errors (e.g. no policy covers a ticket)."""


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


# ========== SLA engine ==========

class CalendarComputationError(ValidationException):
    """Malformed business-hours, holiday or timezone configuration."""


class InvalidTimerTransitionException(DomainException):
    """A timer state transition not allowed by the state machine."""

    def __init__(self, timer_id: str, current_status: str, target_status: str):
        self.timer_id = timer_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Timer {timer_id} cannot move from {current_status} to {target_status}",
            {"timer_id": timer_id, "from": current_status, "to": target_status}
        )


class ConcurrentTransitionConflict(RepositoryException):
    """Optimistic status check failed because another writer got there first."""

    def __init__(self, timer_id: str, expected_status: str, expected_version: int):
        self.timer_id = timer_id
        self.expected_status = expected_status
        self.expected_version = expected_version
        super().__init__(
            f"Timer {timer_id} changed concurrently "
            f"(expected status={expected_status}, version={expected_version})",
            {"timer_id": timer_id}
        )


class PolicyInUseException(DomainException):
    """A policy cannot be deleted while active timers reference it."""

    def __init__(self, policy_id: str, active_timers: int):
        self.policy_id = policy_id
        self.active_timers = active_timers
        super().__init__(
            f"Cannot delete policy with {active_timers} active timers",
            {"policy_id": policy_id, "active_timers": active_timers}
        )


class DispatchFailure(ExternalServiceException):
    """Notification or webhook delivery failed."""
