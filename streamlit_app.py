"""
Main Streamlit application for the dynamic form generator.
Loads a form schema from a URL, renders it, validates answers as they are typed
and keeps them across reloads.
"""

import streamlit as st
import logging

from form_engine.config_loader import get_config_value, get_logging_level, load_config, validate_config

# Configure logging dynamically from config
try:
    log_level_str = get_config_value('logging', 'level', 'INFO')
    logging.basicConfig(level=get_logging_level(log_level_str))
    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured to level: {log_level_str}")
except (OSError, ValueError) as e:
    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger(__name__)
    logger.error(f"Failed to configure logging from config: {e}, using INFO level")

page_title = get_config_value('ui', 'page_title', 'Dynamic Form Generator')
logger.info(f"Starting app version: {get_config_value('app', 'version', 'Unknown')}")

st.set_page_config(
    page_title=page_title,
    page_icon="📝",
    layout="centered"
)

from form_engine.error_handler import ErrorHandler, ErrorType  # noqa: E402
from form_engine.form_generator import FormGenerator  # noqa: E402
from form_engine.form_lifecycle import FormLifecycle, FormState  # noqa: E402
from form_engine.result_formatter import build_result_rows  # noqa: E402
from form_engine.session_manager import SessionManager, run_async  # noqa: E402
from form_engine.ui_feedback import LoadingIndicator, Notify, show_completion  # noqa: E402


def main():
    """Main application entry point."""
    try:
        validate_configuration()
        SessionManager.initialize()
        engine = SessionManager.get_engine()

        if SessionManager.resume_once():
            Notify.once("Restored your saved form", 'info', key='resume_notice')

        run_timers(engine)
        render_header()
        render_main_content(engine)

    except Exception as e:
        ErrorHandler.handle_error(e, "application", ErrorType.SYSTEM, show_details=True)


def validate_configuration():
    """Warn once if config.yaml is invalid; defaults are used where needed."""
    config = load_config()
    if not validate_config(config):
        Notify.once("Configuration issues detected, using defaults where necessary",
                    'warning', key='config_notice')


def run_timers(engine: FormLifecycle):
    """Fire due debounced writes and validity checks."""
    if hasattr(st, 'fragment'):
        @st.fragment(run_every=engine.validity_poll)
        def _timer():
            engine.tick()
        _timer()
    else:
        engine.tick()


def render_header():
    st.title("📝 Dynamic Form Generator")


def render_main_content(engine: FormLifecycle):
    """Render the view for the current lifecycle state."""
    if engine.state == FormState.IDLE:
        render_start_view(engine)
    elif engine.state == FormState.LOADING:
        st.info("⏳ Loading form...")
    elif engine.state == FormState.ERROR:
        render_error_view(engine)
    elif engine.state == FormState.SUBMITTED and st.session_state.get('show_results'):
        render_results_view(engine)
    else:
        render_form_view(engine)


def render_start_view(engine: FormLifecycle):
    """Schema URL input and form generation."""
    st.write("Enter the URL of a form definition to generate a form.")
    st.text_input("Schema URL", key='schema_url_input')

    col1, col2 = st.columns(2)
    with col1:
        if st.button("🚀 Generate Form", type="primary"):
            url = SessionManager.get_schema_url_input().strip()
            if not url:
                Notify.warn("Please enter a schema URL")
                return
            with LoadingIndicator.spinner("Loading form..."):
                loaded = run_async(engine.generate_new_form(url))
            if loaded:
                Notify.success("Form generated")
            st.rerun()
    with col2:
        if engine.schema_url and len(engine.edit_state) > 0:
            if st.button("↩️ Continue Saved Form"):
                with LoadingIndicator.spinner("Loading form..."):
                    run_async(engine.load(engine.schema_url))
                st.rerun()


def render_error_view(engine: FormLifecycle):
    """Retrieval failure with retry."""
    def _retry():
        with LoadingIndicator.spinner("Retrying..."):
            run_async(engine.retry())
        st.rerun()

    ErrorHandler.handle_error(
        engine.last_error,
        "schema_load",
        on_retry=_retry,
        retry_count=engine.retry_count,
        record=SessionManager.is_new_failure(),
    )

    if st.button("⬅️ Back to Main"):
        engine.back_to_main()
        st.rerun()


def render_form_view(engine: FormLifecycle):
    """The active form with progress, submit and reset."""
    if st.button("⬅️ Back to Main"):
        engine.back_to_main()
        SessionManager.clear_results()
        st.rerun()

    show_completion(engine.completion(), engine.status_text())

    if not engine.fields:
        st.info("This form has no fields.")
        return

    FormGenerator.render_form(engine)
    engine.recompute_validity()

    col1, col2 = st.columns(2)
    with col1:
        if st.button("✅ Submit", type="primary", disabled=not engine.is_valid):
            if engine.submit() is not None:
                st.rerun()
    with col2:
        if st.button("🗑️ Reset Form"):
            engine.request_reset()

    if engine.reset_pending:
        render_reset_confirmation(engine)


def _confirm_reset(engine: FormLifecycle):
    engine.confirm_reset()
    SessionManager.clear_results()
    Notify.success("Form cleared")
    st.rerun()


def render_reset_confirmation(engine: FormLifecycle):
    """Ask before clearing every answer."""
    message = "This will clear all fields and saved answers. Continue?"

    if hasattr(st, 'dialog'):
        @st.dialog("Reset form")
        def _dialog():
            st.write(message)
            col1, col2 = st.columns(2)
            with col1:
                if st.button("Yes, clear", type="primary"):
                    _confirm_reset(engine)
            with col2:
                if st.button("Cancel"):
                    engine.cancel_reset()
                    st.rerun()
        _dialog()
        return

    st.warning(f"⚠️ {message}")
    col1, col2 = st.columns(2)
    with col1:
        if st.button("Yes, clear", type="primary", key="confirm_reset"):
            _confirm_reset(engine)
    with col2:
        if st.button("Cancel", key="cancel_reset"):
            engine.cancel_reset()
            st.rerun()


def render_results_view(engine: FormLifecycle):
    """Show the submitted answers."""
    st.success("✅ Form submitted")
    rows = build_result_rows(st.session_state.get('result_snapshot', {}))

    if not rows:
        st.info("No answers were filled in.")
    for row in rows:
        st.markdown(f"**{row['label']}**")
        st.markdown(row['value'])

    col1, col2 = st.columns(2)
    with col1:
        if st.button("Close"):
            SessionManager.close_results()
            st.rerun()
    with col2:
        if st.button("🧹 Clear and Restart", type="primary"):
            _confirm_reset(engine)


if __name__ == "__main__":
    main()
