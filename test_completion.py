"""
Unit tests for completion tracking.
"""

from form_engine.completion import CompletionStatus, completion, status_text
from form_engine.rule_compiler import ValidationResult
from form_engine.schema_models import parse_schema


def required_field(label):
    return {"type": "input", "label": label,
            "rules": {"required": {"value": True, "error_message": "Required"}}}


SCHEMA = parse_schema([
    {"title": "S", "fields": [
        required_field("A"),
        required_field("B"),
        required_field("C"),
        {"type": "input", "label": "Optional"},
    ]}
])


class TestCompletion:

    def test_nothing_filled(self):
        status = completion(SCHEMA, {}, {})
        assert status == CompletionStatus(required_count=3, filled_valid_count=0, percent=0)

    def test_rounds_half_up(self):
        status = completion(SCHEMA, {"s_a": "x", "s_b": "y"}, {})
        assert status.filled_valid_count == 2
        assert status.percent == 67

    def test_one_of_three(self):
        assert completion(SCHEMA, {"s_a": "x"}, {}).percent == 33

    def test_invalid_field_does_not_count(self):
        results = {"s_a": ValidationResult(valid=False, errors=["bad"], failed_rules=["regex"])}
        status = completion(SCHEMA, {"s_a": "x"}, results)
        assert status.filled_valid_count == 0

    def test_optional_fields_ignored(self):
        status = completion(SCHEMA, {"s_optional": "x"}, {})
        assert status.required_count == 3
        assert status.filled_valid_count == 0

    def test_all_filled(self):
        status = completion(SCHEMA, {"s_a": 1, "s_b": 2, "s_c": 3}, {})
        assert status.percent == 100

    def test_no_required_fields_is_complete(self):
        schema = parse_schema([{"title": "S", "fields": [{"type": "input", "label": "X"}]}])
        status = completion(schema, {}, {})
        assert status.required_count == 0
        assert status.percent == 100

    def test_half_rounds_up(self):
        schema = parse_schema([{"title": "S", "fields": [required_field(str(i)) for i in range(8)]}])
        status = completion(schema, {"s_0": "x"}, {})
        # 12.5 -> 13
        assert status.percent == 13


class TestStatusText:

    def test_required_progress(self):
        text = status_text(CompletionStatus(3, 1, 33))
        assert text == "Filled out 1 of 3 required fields (33%)"

    def test_saved_count_without_required(self):
        assert status_text(CompletionStatus(0, 0, 100), 1) == "You have 1 field with saved data"
        assert status_text(CompletionStatus(0, 0, 100), 4) == "You have 4 fields with saved data"

    def test_nothing_to_report(self):
        assert status_text(CompletionStatus(0, 0, 100), 0) is None
