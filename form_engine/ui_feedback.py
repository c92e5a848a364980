"""
UI feedback utilities for the dynamic form app.
Provides notifications, loading indicators and the completion banner.
"""

import streamlit as st
from contextlib import contextmanager
from typing import Optional
import logging

from .completion import CompletionStatus

logger = logging.getLogger(__name__)


class LoadingIndicator:
    """Loading indicator utilities."""

    @staticmethod
    @contextmanager
    def spinner(message: str = "Loading..."):
        """Context manager for spinner loading indicator."""
        with st.spinner(message):
            yield


class Notify:
    """
    Toast-first notification helper.
    Prefers st.toast for non-blocking notifications and falls back to the
    standard message boxes.

    Usage:
    Notify.success("Form submitted")
    Notify.once("Loaded from cache", key="cache_notice")  # Shows only once per session
    """

    ICONS = {
        'success': '✅',
        'info': 'ℹ️',
        'warning': '⚠️',
        'error': '❌'
    }

    @staticmethod
    def _display_notification(message: str, notification_type: str = 'info') -> None:
        icon = Notify.ICONS.get(notification_type, 'ℹ️')

        if hasattr(st, 'toast'):
            st.toast(message, icon=icon)
            return

        full_message = f"{icon} {message}"
        if notification_type == 'success':
            st.success(full_message)
        elif notification_type == 'warning':
            st.warning(full_message)
        elif notification_type == 'error':
            st.error(full_message)
        else:
            st.info(full_message)

    @staticmethod
    def success(message: str) -> None:
        Notify._display_notification(message, 'success')

    @staticmethod
    def info(message: str) -> None:
        Notify._display_notification(message, 'info')

    @staticmethod
    def warn(message: str) -> None:
        Notify._display_notification(message, 'warning')

    @staticmethod
    def error(message: str) -> None:
        Notify._display_notification(message, 'error')

    @staticmethod
    def once(message: str, notification_type: str = 'info', key: str = 'default_once') -> bool:
        """
        Show notification only once per session for the given key.
        Returns True if shown, False if already shown.
        """
        if key not in st.session_state:
            st.session_state[key] = False
        if not st.session_state[key]:
            Notify._display_notification(message, notification_type)
            st.session_state[key] = True
            return True
        return False


def show_completion(status: Optional[CompletionStatus], text: Optional[str]) -> None:
    """Render the progress bar and status line for the active form."""
    if status is None:
        return
    if status.required_count > 0:
        st.progress(min(status.percent, 100) / 100)
    if text:
        st.caption(text)
