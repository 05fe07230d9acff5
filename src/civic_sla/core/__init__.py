"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from civic_sla.core.exceptions import (
    ApplicationException,
    DomainException,
    InvariantViolationException,
    RepositoryException,
    StoreUnavailableException,
    ValidationException,
    ResourceNotFoundException,
    ConfigurationException,
    ExternalServiceException,
    DispatchFailureException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "InvariantViolationException",
    "RepositoryException",
    "StoreUnavailableException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "ExternalServiceException",
    "DispatchFailureException",
]
