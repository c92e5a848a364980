"""
Edit state and per-field synchronization.

EditBuffer holds the raw values of the mounted widgets. EditState holds the
normalized answers and mirrors them into the persistent store. FieldSync is
the debounced bridge from one field's buffer value to EditState.
"""

from typing import Any, Callable, Dict, List, Optional
import logging

from .rule_compiler import is_empty, parse_number
from .scheduler import Scheduler
from .schema_models import FieldType
from .storage import PersistentStore, StorageKey

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.5

BufferListener = Callable[[str, Any], None]


class EditBuffer:
    """Live raw widget values keyed by field id."""

    def __init__(self):
        self._values: Dict[str, Any] = {}
        self._listeners: List[BufferListener] = []

    def subscribe(self, listener: BufferListener) -> None:
        self._listeners.append(listener)

    def get_value(self, field_id: str) -> Any:
        return self._values.get(field_id)

    def get_values(self) -> Dict[str, Any]:
        return dict(self._values)

    def is_registered(self, field_id: str) -> bool:
        return field_id in self._values

    def set_value(self, field_id: str, value: Any, notify: bool = True) -> None:
        """Set a raw value and notify subscribers unless notify is False."""
        self._values[field_id] = value
        if notify:
            for listener in list(self._listeners):
                listener(field_id, value)

    def register(self, field_id: str, value: Any = "") -> None:
        """Bind a field with its initial value without notifying."""
        self.set_value(field_id, value, notify=False)

    def reset(self) -> None:
        self._values = {}


class EditState:
    """
    Normalized answers keyed by field id, mirrored to the persistent store.

    Empty values are never held: writing one deletes the key, so the mapping
    contains exactly the non-empty answers.
    """

    def __init__(self, store: PersistentStore):
        self.store = store
        self._values: Dict[str, Any] = {}

    def load(self) -> Dict[str, Any]:
        """Seed from the persisted projection, dropping empty entries."""
        persisted = self.store.get(StorageKey.FORM_DATA, {}, expect=dict)
        self._values = {k: v for k, v in persisted.items() if not is_empty(v)}
        logger.info(f"Loaded {len(self._values)} persisted field values")
        return self.values

    @property
    def values(self) -> Dict[str, Any]:
        return dict(self._values)

    def get(self, field_id: str, default: Any = None) -> Any:
        return self._values.get(field_id, default)

    def __contains__(self, field_id: str) -> bool:
        return field_id in self._values

    def __len__(self) -> int:
        return len(self._values)

    def update(self, field_id: str, value: Any) -> bool:
        """
        Set one field's value; an empty value removes the field.

        Returns:
            True if the mapping changed
        """
        if is_empty(value):
            if field_id not in self._values:
                return False
            del self._values[field_id]
        else:
            current = self._values.get(field_id)
            if field_id in self._values and current == value and type(current) is type(value):
                return False
            self._values[field_id] = value

        self.store.set(StorageKey.FORM_DATA, self._values)
        return True

    def clear(self) -> None:
        """Purge the persisted projection, then the in-memory answers."""
        self.store.remove(StorageKey.FORM_DATA)
        self._values = {}
        logger.info("Cleared form values")


def normalize_value(value: Any, field_type: FieldType) -> Any:
    """Store numeric input canonically; keep anything else as typed."""
    if field_type == FieldType.NUMBER and not is_empty(value):
        number = parse_number(value)
        if number is not None:
            return number
    return value


class FieldSync:
    """
    Debounced bridge from one field's live value to EditState.

    Each field owns one scheduler slot; a new edit re-arms it. A pending write
    remembers the reset token that was current when it was scheduled and is
    dropped if the token has moved on.
    """

    def __init__(self, field_id: str, field_type: FieldType, buffer: EditBuffer,
                 edit_state: EditState, scheduler: Scheduler,
                 token_source: Callable[[], int],
                 delay: float = DEFAULT_DEBOUNCE_SECONDS):
        self.field_id = field_id
        self.field_type = field_type
        self.buffer = buffer
        self.edit_state = edit_state
        self.scheduler = scheduler
        self.token_source = token_source
        self.delay = delay
        self.previous_value: Any = None
        self.write_count = 0

    @property
    def task_key(self) -> str:
        return f"sync:{self.field_id}"

    @property
    def has_pending_write(self) -> bool:
        return self.scheduler.pending(self.task_key) is not None

    def mount(self) -> None:
        """Remember the seeded value so re-reading it is not a change."""
        self.previous_value = normalize_value(self.buffer.get_value(self.field_id), self.field_type)

    def observe(self, value: Any) -> None:
        """Record a live edit; the write lands after the debounce window."""
        token = self.token_source()
        self.scheduler.call_later(self.task_key, self.delay,
                                  lambda: self._commit(value, token), token=token)

    def flush(self) -> bool:
        """Commit a pending write immediately. Returns True if one was pending."""
        return self.scheduler.run_now(self.task_key)

    def cancel(self) -> bool:
        return self.scheduler.cancel(self.task_key)

    def _commit(self, value: Any, token: int) -> None:
        if token != self.token_source():
            logger.debug(f"Dropping stale write for {self.field_id} (token {token})")
            return

        if is_empty(self.previous_value) and is_empty(value):
            return

        normalized = normalize_value(value, self.field_type)
        if normalized == self.previous_value and type(normalized) is type(self.previous_value):
            return

        self.edit_state.update(self.field_id, normalized)
        self.previous_value = normalized
        self.write_count += 1
        logger.debug(f"Synced {self.field_id}")

    def on_reset(self, token: int) -> None:
        """
        Re-arm after a form reset as if newly mounted.

        Args:
            token: The new reset token
        """
        self.cancel()
        self.previous_value = None
        if is_empty(self.buffer.get_value(self.field_id)):
            self.buffer.register(self.field_id, "")
        logger.debug(f"Field {self.field_id} re-armed for reset token {token}")
