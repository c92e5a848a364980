"""
Rule compiler for form fields.

Turns a field's declarative rule set into an ordered list of pure validator
callables. A validator returns None when the raw value passes and the rendered
error message when it fails.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Union
import logging
import math
import re

from .schema_models import FieldRules, FieldType, ValidationRule

logger = logging.getLogger(__name__)

Number = Union[int, float]


def is_empty(value: Any) -> bool:
    """Empty class shared by validation and sync: None or the empty string."""
    return value is None or value == ""


def parse_number(raw: Any) -> Optional[Number]:
    """
    Parse a raw input value as a number.

    Integral results are returned as int so that "5" and "5.0" both become 5.
    Text ending in a decimal point is not a number yet.

    Args:
        raw: Raw value from the edit buffer

    Returns:
        Parsed number, or None if the value is empty, not numeric or not finite
    """
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        number = float(raw)
    elif isinstance(raw, str):
        text = raw.strip()
        if not text or text.endswith('.'):
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None

    if not math.isfinite(number):
        return None
    if number.is_integer():
        return int(number)
    return number


class Validator:
    """A named, pure validation check."""

    def __init__(self, rule_name: str, check: Callable[[Any], Optional[str]]):
        self.rule_name = rule_name
        self._check = check

    def __call__(self, raw: Any) -> Optional[str]:
        return self._check(raw)

    def __repr__(self) -> str:
        return f"Validator({self.rule_name!r})"


@dataclass
class ValidationResult:
    """Outcome of running every validator of a field."""
    valid: bool = True
    errors: List[str] = field(default_factory=list)
    failed_rules: List[str] = field(default_factory=list)

    @property
    def first_error(self) -> Optional[str]:
        return self.errors[0] if self.errors else None


def _is_active(rule: Optional[ValidationRule]) -> bool:
    return rule is not None and rule.value is not None


def _required_validator(rule: ValidationRule) -> Validator:
    message = rule.render_message()

    def check(raw: Any) -> Optional[str]:
        return message if is_empty(raw) else None

    return Validator('required', check)


def _numeric_bound_validator(name: str, rule: ValidationRule) -> Validator:
    bound = rule.value
    message = rule.render_message()

    def check(raw: Any) -> Optional[str]:
        if is_empty(raw):
            return None
        number = parse_number(raw)
        if number is None:
            return message
        if name == 'min' and number < bound:
            return message
        if name == 'max' and number > bound:
            return message
        return None

    return Validator(name, check)


def _length_bound_validator(name: str, rule: ValidationRule) -> Validator:
    bound = rule.value
    message = rule.render_message()

    def check(raw: Any) -> Optional[str]:
        if is_empty(raw):
            return None
        length = len(str(raw))
        if name == 'min' and length < bound:
            return message
        if name == 'max' and length > bound:
            return message
        return None

    return Validator(name, check)


def _regex_validator(rule: ValidationRule) -> Validator:
    pattern = re.compile(str(rule.value))
    message = rule.render_message()

    def check(raw: Any) -> Optional[str]:
        if is_empty(raw):
            return None
        return None if pattern.search(str(raw)) else message

    return Validator('regex', check)


def compile_rules(rules: FieldRules, field_type: FieldType) -> List[Validator]:
    """
    Compile a rule set into validators in precedence order.

    Precedence is required > min > max > regex. Bounds are numeric for number
    fields and string lengths for every other type.

    Args:
        rules: Declarative rule set of the field
        field_type: Type of the field

    Returns:
        Ordered list of validators
    """
    validators: List[Validator] = []

    if rules.is_required:
        validators.append(_required_validator(rules.required))

    for name in ('min', 'max'):
        rule = getattr(rules, name)
        if not _is_active(rule):
            continue
        if field_type == FieldType.NUMBER:
            validators.append(_numeric_bound_validator(name, rule))
        else:
            validators.append(_length_bound_validator(name, rule))

    if _is_active(rules.regex):
        validators.append(_regex_validator(rules.regex))

    logger.debug(f"Compiled {len(validators)} validators for {field_type.value} field: "
                 f"{[v.rule_name for v in validators]}")
    return validators


def validate_value(validators: List[Validator], raw: Any) -> ValidationResult:
    """
    Run every validator against a raw value.

    All failures are collected in declaration order; the first one is the
    error shown to the user.

    Args:
        validators: Compiled validators of a field
        raw: Raw value from the edit buffer

    Returns:
        ValidationResult
    """
    result = ValidationResult()
    for validator in validators:
        message = validator(raw)
        if message is not None:
            result.valid = False
            result.errors.append(message)
            result.failed_rules.append(validator.rule_name)
    return result
