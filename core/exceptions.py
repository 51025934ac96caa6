"""
Custom exceptions for the categorization pipeline.
"""
from typing import Any, Dict, Optional


class CategorizerException(Exception):
    """Base exception for all categorization pipeline errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize exception.

        Args:
            message: Error message
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(CategorizerException):
    """Raised when a submission fails input validation."""
    pass


class LLMError(CategorizerException):
    """Raised when the classification service call fails."""
    pass


class ClassificationError(CategorizerException):
    """Raised when the classification payload is malformed or does not conform."""
    pass


class DomainValidationError(CategorizerException):
    """Raised when classified line items violate domain rules."""
    pass


class ApportionmentError(DomainValidationError):
    """Raised when an apportionment mode is not allowed for the job."""
    pass


class UnknownCategoryError(DomainValidationError):
    """Raised when a category name cannot be resolved."""
    pass


class PersistenceError(CategorizerException):
    """Raised when a database operation fails."""
    pass


class ConfigurationError(CategorizerException):
    """Raised when configuration is invalid."""
    pass


class DataNotFoundError(CategorizerException):
    """Raised when required data is not found."""
    pass
