"""
Session state management for the Streamlit form app.
Keeps one FormLifecycle per browser session on top of the process-wide store.
"""

import asyncio
import streamlit as st
from typing import Any, Callable, Dict, Optional
from datetime import datetime
import logging

from .form_lifecycle import FormLifecycle
from .schema_loader import SchemaSource
from .storage import get_default_store

logger = logging.getLogger(__name__)

ENGINE_KEY = 'form_engine'


def run_async(coro) -> Any:
    """Run an engine coroutine from synchronous Streamlit code."""
    return asyncio.run(coro)


class SessionManager:
    """Manages Streamlit session state for the form app."""

    @staticmethod
    def initialize(engine_factory: Optional[Callable[[], FormLifecycle]] = None):
        """Initialize all session state variables with default values."""
        if ENGINE_KEY not in st.session_state:
            factory = engine_factory or SessionManager._create_engine
            st.session_state[ENGINE_KEY] = factory()

        engine = st.session_state[ENGINE_KEY]
        defaults = {
            'schema_url_input': engine.schema_url,
            'show_results': False,
            'result_snapshot': {},
            'resume_checked': False,
            'reported_failure': 0,
            'session_id': None,
        }

        for key, default_value in defaults.items():
            if key not in st.session_state:
                st.session_state[key] = default_value

        if not st.session_state.session_id:
            st.session_state.session_id = f"session_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
            logger.info(f"Session initialized: {st.session_state.session_id}")

    @staticmethod
    def _create_engine() -> FormLifecycle:
        source = SchemaSource()
        return FormLifecycle(
            store=get_default_store(),
            fetch_schema=source.fetch_schema,
            presenter=SessionManager.present_results,
        )

    @staticmethod
    def get_engine() -> FormLifecycle:
        """Get the form engine of this session."""
        if ENGINE_KEY not in st.session_state:
            SessionManager.initialize()
        return st.session_state[ENGINE_KEY]

    @staticmethod
    def resume_once() -> bool:
        """Resume a previously active form the first time a session renders."""
        if st.session_state.get('resume_checked'):
            return False
        st.session_state.resume_checked = True
        return run_async(SessionManager.get_engine().resume())

    @staticmethod
    def is_new_failure() -> bool:
        """True the first time the current schema load failure is shown in this session."""
        failure_count = SessionManager.get_engine().failure_count
        if st.session_state.get('reported_failure') == failure_count:
            return False
        st.session_state.reported_failure = failure_count
        return True

    @staticmethod
    def get_schema_url_input() -> str:
        return st.session_state.get('schema_url_input', '')

    @staticmethod
    def present_results(snapshot: Dict[str, Any], clear_and_restart: Callable[[], None]) -> None:
        """Result presenter: keep the snapshot for the results panel."""
        st.session_state.result_snapshot = snapshot
        st.session_state.show_results = True
        st.session_state.clear_and_restart = clear_and_restart

    @staticmethod
    def close_results() -> None:
        st.session_state.show_results = False
        SessionManager.get_engine().close_results()

    @staticmethod
    def clear_results() -> None:
        st.session_state.show_results = False
        st.session_state.result_snapshot = {}

    @staticmethod
    def reset_session():
        """Drop the engine and all session keys; persisted answers are kept."""
        logger.info(f"Resetting session: {st.session_state.get('session_id', 'unknown')}")
        for key in list(st.session_state.keys()):
            del st.session_state[key]
        SessionManager.initialize()

    @staticmethod
    def get_session_info() -> Dict[str, Any]:
        """Get comprehensive session information for debugging."""
        info = SessionManager.get_engine().get_session_info()
        info['session_id'] = st.session_state.get('session_id', 'unknown')
        info['show_results'] = st.session_state.get('show_results', False)
        return info
