"""
Completion tracking for the active form.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .rule_compiler import ValidationResult, is_empty
from .schema_models import FormSchema


@dataclass(frozen=True)
class CompletionStatus:
    required_count: int
    filled_valid_count: int
    percent: int


def completion(schema: FormSchema, edit_state: Mapping[str, Any],
               validation_results: Dict[str, ValidationResult]) -> CompletionStatus:
    """
    Compute progress over required fields.

    A required field counts as filled only if its value is non-empty and it
    currently has no validation error.

    Args:
        schema: Active form schema
        edit_state: Current field values keyed by field id
        validation_results: Current validation results keyed by field id

    Returns:
        CompletionStatus
    """
    required_count = 0
    filled = 0

    for _, field, field_id in schema.iter_fields():
        if not field.rules.is_required:
            continue
        required_count += 1

        result = validation_results.get(field_id)
        has_error = result is not None and not result.valid
        if not is_empty(edit_state.get(field_id)) and not has_error:
            filled += 1

    if required_count == 0:
        percent = 100
    else:
        # round half up
        percent = int(filled * 100 / required_count + 0.5)

    return CompletionStatus(required_count, filled, percent)


def status_text(status: CompletionStatus, saved_count: int = 0) -> Optional[str]:
    """Human-readable progress line, or None when there is nothing to report."""
    if status.required_count > 0:
        return (f"Filled out {status.filled_valid_count} of {status.required_count} "
                f"required fields ({status.percent}%)")
    if saved_count > 0:
        plural = "" if saved_count == 1 else "s"
        return f"You have {saved_count} field{plural} with saved data"
    return None
