"""
Pydantic models for form schema documents.

A schema document is a JSON array of sections. Each section has a title and a
list of fields; each field carries a type, a label, optional select options
and a rule set. Field identifiers are derived from the section title and the
field label when the document does not supply one.
"""

from enum import Enum
from typing import Dict, Any, Iterator, List, Optional, Tuple
import logging
import re

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import SchemaShapeError

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


class FieldType(str, Enum):
    """Supported field types."""
    TEXT = "text"
    NUMBER = "number"
    SELECT = "select"
    MULTILINE = "multiline"


# Wire names used by the schema service
FIELD_TYPE_ALIASES = {
    'input': FieldType.TEXT,
    'input_number': FieldType.NUMBER,
    'textarea': FieldType.MULTILINE,
}


def slugify(text: str) -> str:
    """Lower-case text and replace whitespace runs with underscores."""
    return _WHITESPACE.sub("_", str(text).lower())


def derive_field_id(section_title: str, label: str) -> str:
    """
    Derive the stable identifier for a field without an explicit id.

    Args:
        section_title: Title of the enclosing section
        label: Field label

    Returns:
        Identifier of the form "<section>_<label>"
    """
    return f"{slugify(section_title)}_{slugify(label)}"


class ValidationRule(BaseModel):
    """A single declarative rule: its value and an error message template."""
    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    value: Any = None
    error_message: str = Field(default="", alias="errorMessage")

    def render_message(self) -> str:
        """Substitute {{value}} in the error message template."""
        return self.error_message.replace("{{value}}", format_rule_value(self.value))


class FieldRules(BaseModel):
    """Rule set of a field. Absent rules are None."""
    model_config = ConfigDict(extra='ignore')

    required: Optional[ValidationRule] = None
    min: Optional[ValidationRule] = None
    max: Optional[ValidationRule] = None
    regex: Optional[ValidationRule] = None

    @field_validator('min', 'max')
    @classmethod
    def _bound_is_numeric(cls, rule: Optional[ValidationRule]) -> Optional[ValidationRule]:
        if rule is None or rule.value is None:
            return rule
        if isinstance(rule.value, bool) or not isinstance(rule.value, (int, float)):
            try:
                rule.value = float(rule.value)
            except (TypeError, ValueError):
                raise ValueError(f"bound must be a number, got {rule.value!r}")
            if rule.value.is_integer():
                rule.value = int(rule.value)
        return rule

    @field_validator('regex')
    @classmethod
    def _regex_compiles(cls, rule: Optional[ValidationRule]) -> Optional[ValidationRule]:
        if rule is None or rule.value is None:
            return rule
        try:
            re.compile(str(rule.value))
        except re.error as e:
            raise ValueError(f"invalid regex pattern {rule.value!r}: {e}")
        return rule

    @property
    def is_required(self) -> bool:
        return self.required is not None and bool(self.required.value)


class SelectOption(BaseModel):
    """Option of a select field: display key and stored value."""
    model_config = ConfigDict(extra='ignore')

    key: str
    value: str

    @field_validator('key', 'value', mode='before')
    @classmethod
    def _stringify(cls, v: Any) -> str:
        return v if isinstance(v, str) else str(v)


class FormFieldDef(BaseModel):
    """Definition of one form field."""
    model_config = ConfigDict(extra='ignore')

    id: Optional[str] = None
    type: FieldType = FieldType.TEXT
    label: str
    options: List[SelectOption] = Field(default_factory=list)
    rules: FieldRules = Field(default_factory=FieldRules)

    @field_validator('type', mode='before')
    @classmethod
    def _resolve_alias(cls, v: Any) -> Any:
        if isinstance(v, str) and v in FIELD_TYPE_ALIASES:
            return FIELD_TYPE_ALIASES[v]
        return v

    @field_validator('rules', mode='before')
    @classmethod
    def _default_rules(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator('options', mode='before')
    @classmethod
    def _default_options(cls, v: Any) -> Any:
        return [] if v is None else v


class FormSection(BaseModel):
    """A titled group of fields."""
    model_config = ConfigDict(extra='ignore')

    title: str
    fields: List[FormFieldDef]


class FormSchema(BaseModel):
    """Ordered list of sections making up a form."""

    sections: List[FormSection] = Field(default_factory=list)

    def iter_fields(self) -> Iterator[Tuple[FormSection, FormFieldDef, str]]:
        """Yield (section, field, field_id) in display order."""
        for section in self.sections:
            for field in section.fields:
                yield section, field, field.id or derive_field_id(section.title, field.label)

    def field_ids(self) -> List[str]:
        return [field_id for _, _, field_id in self.iter_fields()]

    def field_map(self) -> Dict[str, FormFieldDef]:
        return {field_id: field for _, field, field_id in self.iter_fields()}

    def has_fields(self) -> bool:
        return any(section.fields for section in self.sections)

    def to_document(self) -> List[Dict[str, Any]]:
        """Serialize back to the JSON document shape used for caching."""
        return [section.model_dump(mode='json', exclude_none=True) for section in self.sections]


def format_rule_value(value: Any) -> str:
    """Render a rule value the way it appears in messages (5.0 -> '5')."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_schema(data: Any) -> FormSchema:
    """
    Validate a decoded schema document and build a FormSchema.

    Args:
        data: Decoded JSON document

    Returns:
        FormSchema instance

    Raises:
        SchemaShapeError: If the document is structurally invalid
    """
    if not isinstance(data, list):
        raise SchemaShapeError("Invalid schema format: Expected an array of form sections")

    for section in data:
        if not (isinstance(section, dict) and 'title' in section
                and 'fields' in section and isinstance(section['fields'], list)):
            raise SchemaShapeError("Invalid schema structure received from API")

    try:
        schema = FormSchema(sections=data)
    except ValidationError as e:
        details = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        logger.error(f"Schema field validation failed: {details}")
        raise SchemaShapeError("Invalid schema structure received from API", details) from e

    ids = schema.field_ids()
    duplicates = sorted({field_id for field_id in ids if ids.count(field_id) > 1})
    if duplicates:
        logger.warning(f"Schema contains duplicate field ids, values will be shared: {duplicates}")

    logger.info(f"Parsed schema with {len(schema.sections)} sections and {len(ids)} fields")
    return schema
