"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. Inside a document processing run
most of them are recovered locally; only the run boundary turns them into a
failed document status.
"""

from typing import Optional, List


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
    """Exception for configuration errors."""


class RateLimitExceededException(ApplicationException):
    """Exception when a caller exceeds its request window."""

    def __init__(self, key: str, limit: int):
        self.key = key
        self.limit = limit
        super().__init__(
            f"Rate limit of {limit} requests per minute exceeded",
            {"key": key, "limit": limit}
        )


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


class LLMException(ExternalServiceException):
    """Exception for LLM and embedding API failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("LLM Service", message, details)


class VectorStoreException(ExternalServiceException):
    """Exception for vector store failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Vector Store", message, details)


class StorageException(ExternalServiceException):
    """Raised when a document file cannot be found in any storage location."""

    def __init__(
        self,
        message: str,
        attempted_locations: Optional[List[str]] = None,
        details: Optional[dict] = None
    ):
        self.attempted_locations = attempted_locations or []
        merged = {"attempted_locations": self.attempted_locations, **(details or {})}
        super().__init__("Document Storage", message, merged)


class NotificationException(ExternalServiceException):
    """Exception for follow-up notification hand-off failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Follow-up Notifier", message, details)


class ExtractionException(DomainException):
    """Raised by format readers; the extractor converts it to degraded text."""


class ContentQualityException(DomainException):
    """Raised when extracted text fails the content-quality gate."""

    def __init__(self, reasons: List[str], details: Optional[dict] = None):
        self.reasons = reasons
        super().__init__(
            "Content quality rejected: " + "; ".join(reasons),
            details or {"reasons": reasons}
        )


class ProcessingTimeoutException(DomainException):
    """Raised when a document processing run exceeds its wall-clock budget."""

    def __init__(self, document_id: str, timeout_seconds: float):
        self.document_id = document_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"processing timed out after {timeout_seconds:g}s",
            {"document_id": document_id, "timeout_seconds": timeout_seconds}
        )
