"""
Error handling utilities for the dynamic form app.
Turns engine exceptions into user-friendly messages with recovery options.
"""

import streamlit as st
import logging
import traceback
from typing import Any, Optional, Callable
from datetime import datetime
from pathlib import Path
import json

from .exceptions import (
    FormEngineError,
    LifecycleError,
    RetrievalError,
    SchemaShapeError,
    SchemaTimeoutError,
    StorageFault,
)

logger = logging.getLogger(__name__)

ANALYTICS_FILE = Path("logs/error_analytics.jsonl")


class ErrorType:
    """Error type constants."""
    RETRIEVAL = "retrieval"
    TIMEOUT = "timeout"
    SCHEMA_SHAPE = "schema_shape"
    STORAGE = "storage"
    VALIDATION = "validation"
    SYSTEM = "system"


def classify_error(error: Exception) -> str:
    """Map an exception to its ErrorType."""
    if isinstance(error, SchemaTimeoutError):
        return ErrorType.TIMEOUT
    if isinstance(error, RetrievalError):
        return ErrorType.RETRIEVAL
    if isinstance(error, SchemaShapeError):
        return ErrorType.SCHEMA_SHAPE
    if isinstance(error, StorageFault):
        return ErrorType.STORAGE
    if isinstance(error, (ValueError, TypeError)):
        return ErrorType.VALIDATION
    return ErrorType.SYSTEM


class ErrorHandler:
    """Error handling for the dynamic form app."""

    @staticmethod
    def handle_error(
        error: Exception,
        context: str,
        error_type: Optional[str] = None,
        user_message: Optional[str] = None,
        on_retry: Optional[Callable[[], Any]] = None,
        retry_count: int = 0,
        show_details: bool = False,
        record: bool = True
    ) -> None:
        """
        Handle errors with user-friendly messages and a retry option.

        Args:
            error: The exception that occurred
            context: Context where the error occurred
            error_type: Type of error (from ErrorType constants); derived if omitted
            user_message: Custom user-friendly message
            on_retry: Action for the retry button
            retry_count: Number of retries already made
            show_details: Whether to show technical details
            record: Log the error and append it to the analytics file. Views
                that redisplay the same error on every rerun pass False after
                the first time.
        """
        error_type = error_type or classify_error(error)

        if not user_message:
            user_message = ErrorHandler._get_user_friendly_message(error, error_type)

        ErrorHandler._display_error(user_message, error, context, on_retry, retry_count, show_details)
        if record:
            logger.error(f"Error in {context}: {str(error)}", exc_info=error)
            ErrorHandler._log_error_analytics(error, context, error_type)

    @staticmethod
    def _get_user_friendly_message(error: Exception, error_type: str) -> str:
        """Generate user-friendly error messages based on error type."""
        error_messages = {
            ErrorType.RETRIEVAL: {
                RetrievalError: "🌐 The form could not be loaded from the server.",
                ConnectionError: "🌐 Network connection error. Please check your internet connection.",
                "default": "🌐 Network error occurred. Please check your connection and try again."
            },
            ErrorType.TIMEOUT: {
                "default": "⏱️ Request timed out. The server took too long to respond."
            },
            ErrorType.SCHEMA_SHAPE: {
                json.JSONDecodeError: "📋 The form definition is not valid JSON.",
                SchemaShapeError: "📋 The form definition has an unexpected structure.",
                "default": "📋 Form definition error. Please check the schema source."
            },
            ErrorType.STORAGE: {
                "default": "💾 Saved answers are unavailable. Your edits are kept for this session only."
            },
            ErrorType.VALIDATION: {
                ValueError: "✅ Data validation failed. Please check your input and try again.",
                TypeError: "✅ Invalid data type provided. Please ensure data matches expected format.",
                "default": "✅ Validation error occurred. Please review your data and try again."
            },
            ErrorType.SYSTEM: {
                LifecycleError: "💻 That action is not available right now.",
                MemoryError: "💻 System is running low on memory. Please try again or contact support.",
                "default": "💻 System error occurred. Please try again or contact support."
            }
        }

        error_type_messages = error_messages.get(error_type, error_messages[ErrorType.SYSTEM])

        for exception_type, message in error_type_messages.items():
            if exception_type != "default" and isinstance(error, exception_type):
                return message

        return error_type_messages.get("default", "An unexpected error occurred.")

    @staticmethod
    def _display_error(
        user_message: str,
        error: Exception,
        context: str,
        on_retry: Optional[Callable[[], Any]] = None,
        retry_count: int = 0,
        show_details: bool = False
    ) -> None:
        """Display error message to user with recovery options."""
        st.error(user_message)

        detail = error.message if isinstance(error, FormEngineError) else str(error)
        if detail and detail not in user_message:
            st.caption(detail)

        if isinstance(error, FormEngineError) and error.recovery_suggestions:
            st.subheader("🔧 Suggested Actions:")
            for suggestion in error.recovery_suggestions:
                st.write(f"- {suggestion}")

        if on_retry is not None:
            label = f"🔄 Retry ({retry_count})" if retry_count > 0 else "🔄 Retry"
            if st.button(label, key=f"retry_{context}"):
                on_retry()

        if show_details:
            with st.expander("🔍 Technical Details"):
                st.write(f"**Error Type:** {type(error).__name__}")
                st.write(f"**Context:** {context}")
                st.write(f"**Error Message:** {str(error)}")
                st.code("".join(traceback.format_exception(type(error), error, error.__traceback__)))

    @staticmethod
    def _log_error_analytics(error: Exception, context: str, error_type: str) -> None:
        """Log error for analytics and monitoring."""
        try:
            error_data = {
                'timestamp': datetime.now().isoformat(),
                'error_type': error_type,
                'exception_type': type(error).__name__,
                'context': context,
                'message': str(error),
                'user_agent': 'streamlit_app'
            }
            if isinstance(error, FormEngineError):
                error_data['details'] = error.context

            ANALYTICS_FILE.parent.mkdir(exist_ok=True)
            with open(ANALYTICS_FILE, 'a') as f:
                json.dump(error_data, f, default=str)
                f.write('\n')

        except OSError as e:
            logger.error(f"Failed to log error analytics: {e}")
