"""
Dynamic form generator for the form app.
Renders the mounted field tree of a FormLifecycle as Streamlit widgets.
"""

import streamlit as st
from typing import Any, List, Optional
import logging

from .form_lifecycle import FormLifecycle, MountedField
from .rule_compiler import is_empty
from .schema_models import FieldType

logger = logging.getLogger(__name__)

SELECT_PLACEHOLDER = "-- Select an option --"


def widget_key(field_id: str, reset_token: int) -> str:
    """Widget key for a field; a new reset token yields fresh widgets."""
    return f"field_{field_id}_v{reset_token}"


def to_widget_value(value: Any, field_type: FieldType) -> Any:
    """Convert a live buffer value to what the widget expects."""
    if field_type == FieldType.SELECT:
        return None if value in (None, "") else str(value)
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def from_widget_value(value: Any) -> Any:
    """Convert a widget value back to a raw buffer value."""
    return "" if value is None else value


class FormGenerator:
    """Renders forms from the mounted fields of a FormLifecycle."""

    @staticmethod
    def render_form(engine: FormLifecycle) -> None:
        """Render every section and field of the active form."""
        if engine.schema is None:
            return

        current_section = None
        for mounted in engine.fields.values():
            if mounted.section_title != current_section:
                current_section = mounted.section_title
                st.subheader(current_section)
            FormGenerator._render_field(engine, mounted)

    @staticmethod
    def _on_change(engine: FormLifecycle, field_id: str, key: str) -> None:
        value = from_widget_value(st.session_state.get(key))
        engine.set_value(field_id, value)
        # a cleared field goes back to untouched
        if not is_empty(value):
            engine.touch(field_id)

    @staticmethod
    def _render_field(engine: FormLifecycle, mounted: MountedField) -> Any:
        """Render a single field, seeding the widget from the live buffer."""
        definition = mounted.definition
        key = widget_key(mounted.field_id, engine.reset_token)

        if key not in st.session_state:
            st.session_state[key] = to_widget_value(engine.buffer.get_value(mounted.field_id),
                                                    definition.type)

        label = definition.label
        if definition.rules.is_required:
            label = f"{label} *"

        kwargs = {
            'label': label,
            'key': key,
            'on_change': FormGenerator._on_change,
            'args': (engine, mounted.field_id, key),
        }

        logger.debug(f"[_render_field] Field: {mounted.field_id}, Widget Key: {key}")

        if definition.type == FieldType.SELECT:
            value = FormGenerator._render_selectbox(mounted, kwargs)
        elif definition.type == FieldType.MULTILINE:
            value = st.text_area(**kwargs)
        elif definition.type == FieldType.NUMBER:
            kwargs['placeholder'] = FormGenerator._number_hint(mounted)
            value = st.text_input(**kwargs)
        else:
            value = st.text_input(**kwargs)

        error = engine.visible_error(mounted.field_id)
        if error:
            st.error(error)

        return value

    @staticmethod
    def _render_selectbox(mounted: MountedField, kwargs: dict) -> Any:
        options: List[Optional[str]] = [None] + [option.value for option in mounted.definition.options]
        labels = {option.value: option.key for option in mounted.definition.options}
        kwargs['options'] = options
        kwargs['format_func'] = lambda x: SELECT_PLACEHOLDER if x is None else labels.get(x, str(x))
        return st.selectbox(**kwargs)

    @staticmethod
    def _number_hint(mounted: MountedField) -> str:
        rules = mounted.definition.rules
        if rules.min is not None and rules.max is not None:
            return f"Number between {rules.min.value} and {rules.max.value}"
        if rules.min is not None:
            return f"Number, at least {rules.min.value}"
        if rules.max is not None:
            return f"Number, at most {rules.max.value}"
        return "Number"
