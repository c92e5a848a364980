"""
Exception classes for the dynamic form engine.

Retrieval-family errors (RetrievalError, SchemaTimeoutError, SchemaShapeError)
surface to the user with a retry affordance. StorageFault is always recovered
locally by the persistent store and never reaches the user.
"""

from typing import Optional, Dict, Any, List


class FormEngineError(Exception):
    """
    Base exception for form engine errors.

    Attributes:
        message: Error message
        context: Additional context information
        recovery_suggestions: List of suggested recovery actions
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None,
                 recovery_suggestions: Optional[List[str]] = None):
        self.message = message
        self.context = context or {}
        self.recovery_suggestions = recovery_suggestions or []
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def get_full_details(self) -> Dict[str, Any]:
        """Get complete error details including context and suggestions."""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'context': self.context,
            'recovery_suggestions': self.recovery_suggestions
        }


class RetrievalError(FormEngineError):
    """
    Raised when the schema document cannot be retrieved.

    This covers transport failures and non-success HTTP statuses.
    """

    def __init__(self, message: str, url: Optional[str] = None,
                 status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code

        context = {
            'url': url,
            'status_code': status_code
        }

        recovery_suggestions = [
            "Check that the schema URL is correct and reachable",
            "Retry the request",
            "Verify your network connection"
        ]

        super().__init__(message, context, recovery_suggestions)


class SchemaTimeoutError(FormEngineError, TimeoutError):
    """Raised when schema retrieval exceeds its deadline."""

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None,
                 message: Optional[str] = None):
        self.url = url
        self.timeout = timeout

        if message is None:
            message = "Request timeout: The server took too long to respond"

        super().__init__(
            message,
            context={'url': url, 'timeout': timeout},
            recovery_suggestions=[
                "Retry the request",
                "Check whether the schema server is overloaded or down"
            ]
        )


class SchemaShapeError(FormEngineError):
    """
    Raised when a schema document is structurally invalid.

    This includes non-JSON bodies, documents that are not a list of sections,
    sections without title/fields, and field definitions that fail validation.
    """

    def __init__(self, message: str, details: Optional[List[str]] = None):
        self.details = details or []

        super().__init__(
            message,
            context={'details': self.details},
            recovery_suggestions=[
                "Verify the schema document is a JSON array of sections",
                "Each section needs a 'title' and a 'fields' list",
                "Each field needs a supported 'type' and a 'label'"
            ]
        )


class StorageFault(FormEngineError):
    """
    Raised (and recovered) when the durable storage medium is unavailable,
    rejects a write, or holds a corrupted payload.
    """

    def __init__(self, operation: str, key: str, original_error: Optional[Exception] = None,
                 message: Optional[str] = None):
        self.operation = operation
        self.key = key
        self.original_error = original_error

        if message is None:
            reason = str(original_error) if original_error else "storage unavailable"
            message = f"Storage {operation} failed for key '{key}': {reason}"

        context = {
            'operation': operation,
            'key': key,
            'original_error_type': type(original_error).__name__ if original_error else None
        }

        super().__init__(message, context, ["Continuing with in-memory state only"])


class LifecycleError(FormEngineError):
    """Raised on an illegal form lifecycle transition."""

    def __init__(self, current_state: str, target_state: str):
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            f"Illegal form transition: {current_state} -> {target_state}",
            context={'current_state': current_state, 'target_state': target_state}
        )
