"""
Custom exception classes for the Perdia content engine.

This module defines all exception classes used throughout the codebase.
Vendor and network failures are retried or routed to a fallback provider;
content-validation failures block progression; quality issues are flagged
for human review rather than raised.

Hierarchy:
    Exception
    +-- AgentBaseError (base for all engine-specific errors)
    |   +-- VendorAPIError
    |   +-- GenerationError
    |   |   +-- DraftValidationError
    |   |   +-- ContentValidationError
    |   |   +-- GenerationCancelledError
    |   +-- HumanizationError
    |   +-- MonetizationError
    |   +-- PublishError
    |   +-- PipelineBusyError
    |   +-- IdeaDiscoveryError
    |   +-- RevisionError
    +-- ValidationError (ValueError)
    +-- DatabaseError
    +-- ConfigurationError
    +-- RetryExhaustedError
    +-- NodeTimeoutError
"""

from typing import Any, Dict, List


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class AgentBaseError(Exception):
    """Base exception for all engine-related errors."""

    pass


# =============================================================================
# CORE EXCEPTIONS
# =============================================================================


class ValidationError(ValueError):
    """Raised when input validation fails."""

    pass


class DatabaseError(Exception):
    """Raised when database operations fail."""

    pass


class ConfigurationError(Exception):
    """Raised when system configuration is invalid."""

    pass


class RetryExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        operation: Name of the operation that was retried.
        attempts: Total number of attempts made.
        last_error: The last exception raised before giving up.
    """

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempts. "
            f"Last error: {last_error}"
        )


class NodeTimeoutError(Exception):
    """Raised when a pipeline node exceeds its timeout.

    Attributes:
        node_name: Name of the node that timed out.
        timeout: Timeout duration in seconds.
    """

    def __init__(self, node_name: str, timeout: int):
        self.node_name = node_name
        self.timeout = timeout
        super().__init__(f"Node '{node_name}' timed out after {timeout} seconds")


# =============================================================================
# VENDOR EXCEPTIONS
# =============================================================================


class VendorAPIError(AgentBaseError):
    """Raised when a vendor API returns an unusable response.

    Attributes:
        vendor: Short vendor name (``"grok"``, ``"stealthgpt"``, ...).
        status_code: HTTP status when available.
    """

    def __init__(self, vendor: str, message: str, status_code: int = None):
        self.vendor = vendor
        self.status_code = status_code
        prefix = f"{vendor} API error"
        if status_code is not None:
            prefix += f" ({status_code})"
        super().__init__(f"{prefix}: {message}")


# =============================================================================
# GENERATION PIPELINE EXCEPTIONS
# =============================================================================


class GenerationError(AgentBaseError):
    """Raised when article generation cannot produce an article."""

    pass


class DraftValidationError(GenerationError):
    """Raised when the draft is still blocked after the regeneration retry.

    Attributes:
        issues: The blocking validation issues (as dicts).
    """

    def __init__(self, issues: List[Dict[str, Any]]):
        self.issues = issues
        messages = "; ".join(str(i.get("message", i)) for i in issues)
        super().__init__(f"Draft generation failed validation: {messages}")


class ContentValidationError(GenerationError):
    """Raised when the pre-QA validation pass finds blocking issues."""

    def __init__(self, issues: List[Dict[str, Any]]):
        self.issues = issues
        messages = "; ".join(str(i.get("message", i)) for i in issues)
        super().__init__(f"Content validation failed: {messages}")


class GenerationCancelledError(GenerationError):
    """Raised when a run is cancelled between stages."""

    pass


class HumanizationError(AgentBaseError):
    """Raised when every humanization provider failed."""

    pass


class MonetizationError(AgentBaseError):
    """Raised when monetization slots cannot be generated."""

    pass


class PublishError(AgentBaseError):
    """Raised when the publish webhook rejects an article."""

    pass


class PipelineBusyError(AgentBaseError):
    """Raised when a batch is started while another is still running."""

    pass


class IdeaDiscoveryError(AgentBaseError):
    """Raised when idea discovery cannot load its context or parse ideas."""

    pass


class RevisionError(AgentBaseError):
    """Raised when an article or version to revise does not exist."""

    pass


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    # Base
    "AgentBaseError",
    # Core
    "ValidationError",
    "DatabaseError",
    "ConfigurationError",
    "RetryExhaustedError",
    "NodeTimeoutError",
    # Vendors
    "VendorAPIError",
    # Generation pipeline
    "GenerationError",
    "DraftValidationError",
    "ContentValidationError",
    "GenerationCancelledError",
    "HumanizationError",
    "MonetizationError",
    "PublishError",
    "PipelineBusyError",
    "IdeaDiscoveryError",
    "RevisionError",
]
