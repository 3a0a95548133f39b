"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from helpdesk_sla.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    ResourceNotFoundException,
    ConfigurationException,
    ExternalServiceException,
    CalendarComputationError,
    InvalidTimerTransitionException,
    ConcurrentTransitionConflict,
    PolicyInUseException,
    DispatchFailure,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "ExternalServiceException",
    "CalendarComputationError",
    "InvalidTimerTransitionException",
    "ConcurrentTransitionConflict",
    "PolicyInUseException",
    "DispatchFailure",
]
