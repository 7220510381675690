"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from knowledge_pipeline.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    ResourceNotFoundException,
    ConfigurationException,
    RateLimitExceededException,
    ExternalServiceException,
    LLMException,
    VectorStoreException,
    StorageException,
    NotificationException,
    ExtractionException,
    ContentQualityException,
    ProcessingTimeoutException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "RateLimitExceededException",
    "ExternalServiceException",
    "LLMException",
    "VectorStoreException",
    "StorageException",
    "NotificationException",
    "ExtractionException",
    "ContentQualityException",
    "ProcessingTimeoutException",
]
