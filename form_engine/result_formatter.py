"""
Display helpers for submitted form results.

The classifier guesses how a submitted value should be shown from its key and
content. It is a best-effort presentation aid: guesses may be wrong, but no
input makes it raise.
"""

import re
from typing import Any, Dict, List, Tuple
import logging

logger = logging.getLogger(__name__)

_TEXTAREA_TOKENS = (
    'description', 'comment', 'message', 'note', 'details', 'explanation',
    'feedback', 'summary', 'content', 'text', 'bio', 'about', 'paragraph',
    'long', 'area'
)
_DATE_TOKENS = ('date', 'dob', 'birthday', 'birth_date', 'day')
_EMAIL_TOKENS = ('email', 'mail')
_PHONE_TOKENS = ('phone', 'mobile', 'cell', 'tel')
_URL_TOKENS = ('url', 'website', 'web', 'link', 'site')
_NUMBER_TOKENS = (
    'number', 'amount', 'qty', 'quantity', 'count', 'num', 'age', 'year',
    'price', 'cost', 'fee'
)

_DATE_PATTERN = re.compile(r"^\d{1,4}[-/]\d{1,2}[-/]\d{1,4}")
_EMAIL_PATTERN = re.compile(r"^[^@]+@[^@]+\.[^@]+$")
_PHONE_PATTERN = re.compile(r"^(\+?\d{1,3}[- ]?)?\(?\d{3}\)?[- ]?\d{3}[- ]?\d{4}$")
_URL_PATTERN = re.compile(r"^https?://")


def format_label(key: Any) -> str:
    """
    Turn a field id into a display label.

    The leading section prefix is dropped: "personal_first_name" -> "First Name".
    """
    parts = [p for p in str(key).split('_') if p]
    if len(parts) > 1:
        parts = parts[1:]
    return ' '.join(word[:1].upper() + word[1:] for word in parts)


def _has_token(key: str, tokens: Tuple[str, ...]) -> bool:
    return any(token in key for token in tokens)


def classify_value(key: Any, value: Any) -> str:
    """
    Guess the display kind of a submitted value.

    Returns:
        One of textarea, date, email, phone, url, number, array, boolean, input
    """
    key_lower = str(key).lower()
    text = value if isinstance(value, str) else None

    if _has_token(key_lower, _TEXTAREA_TOKENS) or (text is not None and (len(text) > 100 or '\n' in text)):
        return 'textarea'
    if _has_token(key_lower, _DATE_TOKENS) or (text is not None and _DATE_PATTERN.match(text)):
        return 'date'
    if _has_token(key_lower, _EMAIL_TOKENS) or (text is not None and _EMAIL_PATTERN.match(text)):
        return 'email'
    if _has_token(key_lower, _PHONE_TOKENS) or (text is not None and _PHONE_PATTERN.match(text)):
        return 'phone'
    if _has_token(key_lower, _URL_TOKENS) or (text is not None and _URL_PATTERN.match(text)):
        return 'url'
    if isinstance(value, bool):
        return 'boolean'
    if _has_token(key_lower, _NUMBER_TOKENS) or isinstance(value, (int, float)):
        return 'number'
    if isinstance(value, (list, tuple)):
        return 'array'
    return 'input'


def format_value(value: Any, kind: str) -> str:
    """Render a value as Markdown for its display kind."""
    if value is None:
        return 'N/A'
    if kind == 'boolean':
        return 'Yes' if value else 'No'
    if kind == 'array' and isinstance(value, (list, tuple)):
        return ', '.join(str(item) for item in value)
    if kind == 'textarea':
        return '  \n'.join(str(value).split('\n'))
    if kind == 'url':
        url = str(value)
        href = url if url.startswith('http') else f"https://{url}"
        return f"[{url}]({href})"
    if kind == 'email':
        return f"[{value}](mailto:{value})"
    return str(value)


def build_result_rows(snapshot: Dict[str, Any]) -> List[Dict[str, str]]:
    """
    Prepare submitted values for display.

    Args:
        snapshot: Submitted field values keyed by field id

    Returns:
        Rows with label, kind and formatted value, in snapshot order
    """
    rows = []
    for key, value in snapshot.items():
        kind = classify_value(key, value)
        rows.append({
            'key': str(key),
            'label': format_label(key),
            'kind': kind,
            'value': format_value(value, kind),
        })
    logger.debug(f"Prepared {len(rows)} result rows")
    return rows
