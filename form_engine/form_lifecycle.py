"""
Form lifecycle state machine.

FormLifecycle owns the active schema, mounts and resets the field tree, keeps
validation results current and coordinates the edit buffer, EditState and the
persistent store.

States: idle -> loading -> active -> {submitted, error}; active <-> submitted;
any state -> idle via back_to_main.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
import logging

from .completion import CompletionStatus, completion, status_text
from .config_loader import DEFAULT_SCHEMA_URL, get_config_value
from .exceptions import LifecycleError, RetrievalError, SchemaShapeError, SchemaTimeoutError
from .field_sync import DEFAULT_DEBOUNCE_SECONDS, EditBuffer, EditState, FieldSync
from .rule_compiler import ValidationResult, Validator, compile_rules, is_empty, validate_value
from .scheduler import Scheduler
from .schema_models import FormFieldDef, FormSchema, parse_schema
from .storage import PersistentStore, StorageKey

logger = logging.getLogger(__name__)

DEFAULT_VALIDITY_POLL_SECONDS = 0.5
VALIDITY_TASK_KEY = "validity:recheck"

SchemaFetcher = Callable[[str], Awaitable[FormSchema]]
ResultPresenter = Callable[[Dict[str, Any], Callable[[], None]], None]

RETRIEVAL_ERRORS = (RetrievalError, SchemaTimeoutError, SchemaShapeError)


class FormState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    ACTIVE = "active"
    ERROR = "error"
    SUBMITTED = "submitted"


_TRANSITIONS = {
    FormState.IDLE: {FormState.LOADING},
    FormState.LOADING: {FormState.ACTIVE, FormState.ERROR},
    FormState.ACTIVE: {FormState.LOADING, FormState.SUBMITTED},
    FormState.ERROR: {FormState.LOADING},
    FormState.SUBMITTED: {FormState.ACTIVE, FormState.LOADING},
}


@dataclass
class MountedField:
    """Runtime pieces of a mounted field."""
    field_id: str
    definition: FormFieldDef
    validators: List[Validator]
    sync: FieldSync
    section_title: str = ""


@dataclass
class Submission:
    snapshot: Dict[str, Any] = field(default_factory=dict)


class FormLifecycle:
    """State machine governing schema acquisition, editing, submission and reset."""

    def __init__(self, store: PersistentStore, fetch_schema: SchemaFetcher,
                 scheduler: Optional[Scheduler] = None,
                 presenter: Optional[ResultPresenter] = None,
                 debounce: Optional[float] = None,
                 validity_poll: Optional[float] = None,
                 default_url: Optional[str] = None):
        self.store = store
        self.fetch_schema = fetch_schema
        self.scheduler = scheduler or Scheduler()
        self.presenter = presenter

        if debounce is None:
            debounce = float(get_config_value('sync', 'debounce_ms', DEFAULT_DEBOUNCE_SECONDS * 1000)) / 1000
        if validity_poll is None:
            validity_poll = float(get_config_value('sync', 'validity_poll_ms',
                                                   DEFAULT_VALIDITY_POLL_SECONDS * 1000)) / 1000
        self.debounce = debounce
        self.validity_poll = validity_poll

        self.state = FormState.IDLE
        self.schema: Optional[FormSchema] = None
        self.schema_version = 0
        self.schema_url = store.get(StorageKey.SCHEMA_URL, expect=str) \
            or default_url or get_config_value('schema', 'default_url', DEFAULT_SCHEMA_URL)
        self.error_message: Optional[str] = None
        self.last_error: Optional[Exception] = None
        self.failure_count = 0
        self.retry_count = 0

        self.reset_token = 0
        self.reset_pending = False
        self.touched: Dict[str, bool] = {}
        self.results: Dict[str, ValidationResult] = {}
        self.is_valid = False
        self.last_submission: Optional[Submission] = None

        self.buffer = EditBuffer()
        self.buffer.subscribe(self._on_buffer_change)
        self.edit_state = EditState(store)
        self.edit_state.load()
        self.fields: Dict[str, MountedField] = {}

    # -- state --------------------------------------------------------------

    def _transition(self, target: FormState) -> None:
        if target == self.state:
            return
        if target != FormState.IDLE and target not in _TRANSITIONS[self.state]:
            raise LifecycleError(self.state.value, target.value)
        logger.info(f"Form state transition: {self.state.value} -> {target.value}")
        self.state = target

    @property
    def is_active(self) -> bool:
        return self.state in (FormState.ACTIVE, FormState.SUBMITTED)

    def current_token(self) -> int:
        return self.reset_token

    # -- loading ------------------------------------------------------------

    def _cached_schema(self) -> Optional[FormSchema]:
        document = self.store.get(StorageKey.SCHEMA_DATA, expect=list)
        if document is None:
            return None
        try:
            return parse_schema(document)
        except SchemaShapeError as e:
            logger.error(f"Error parsing cached schema: {e}")
            self.store.remove(StorageKey.SCHEMA_DATA)
            return None

    async def load(self, url: Optional[str] = None, skip_cache: bool = False) -> bool:
        """
        Acquire a schema and activate the form.

        A valid cached schema document wins unless skip_cache is set. A
        retrieval failure moves to the error state and leaves any mounted
        fields untouched.

        Args:
            url: Schema URL (defaults to the current one)
            skip_cache: Ignore the cached document and fetch

        Returns:
            True if the form is active afterwards
        """
        url = url or self.schema_url
        self.schema_url = url
        self._transition(FormState.LOADING)
        self.error_message = None
        self.last_error = None

        if not skip_cache:
            cached = self._cached_schema()
            if cached is not None:
                logger.info("Using cached schema document")
                self.store.set(StorageKey.SCHEMA_URL, url)
                self.store.set(StorageKey.FORM_ACTIVE, True)
                self._activate(cached)
                return True

        try:
            schema = await self.fetch_schema(url)
        except RETRIEVAL_ERRORS as e:
            self.error_message = e.message
            self.last_error = e
            self.failure_count += 1
            self._transition(FormState.ERROR)
            logger.error(f"Error fetching schema: {e}")
            return False

        self.store.set(StorageKey.SCHEMA_DATA, schema.to_document())
        self.store.set(StorageKey.SCHEMA_URL, url)
        self.store.set(StorageKey.FORM_ACTIVE, True)
        self._activate(schema)
        return True

    async def resume(self) -> bool:
        """Reload a form that was active when the process last stopped."""
        if self.store.get(StorageKey.FORM_ACTIVE) is not True:
            return False
        logger.info(f"Resuming active form from {self.schema_url}")
        return await self.load(self.schema_url)

    async def retry(self) -> bool:
        """Reload the schema, always bypassing the cache."""
        self.retry_count += 1
        return await self.load(self.schema_url, skip_cache=True)

    async def generate_new_form(self, url: str) -> bool:
        """
        Start over with a new schema source.

        Answers and the cached document are purged before the fetch, so a new
        schema with colliding field ids starts empty.
        """
        if self.state != FormState.IDLE:
            self._transition(FormState.LOADING)
        self._unmount()
        self.schema = None
        self.edit_state.clear()
        self._bump_token()
        self.buffer.reset()
        self.touched = {}
        self.results = {}
        self.store.remove(StorageKey.SCHEMA_DATA)
        self.retry_count = 0
        return await self.load(url, skip_cache=True)

    def back_to_main(self) -> None:
        """Leave the form; keep the URL and answers."""
        self._flush_all()
        self._unmount()
        self.schema = None
        self.reset_pending = False
        self.error_message = None
        self.last_error = None
        self.store.remove(StorageKey.FORM_ACTIVE)
        self._transition(FormState.IDLE)

    # -- mounting -----------------------------------------------------------

    def _unmount(self) -> None:
        self.scheduler.cancel_prefix("sync:")
        self.scheduler.cancel(VALIDITY_TASK_KEY)
        self.fields = {}

    def _activate(self, schema: FormSchema) -> None:
        self._unmount()
        self.schema = schema
        self.schema_version += 1
        self.buffer.reset()
        self.touched = {}
        if len(self.edit_state) == 0:
            self.edit_state.load()

        for section, definition, field_id in schema.iter_fields():
            validators = compile_rules(definition.rules, definition.type)
            self.buffer.register(field_id, self.edit_state.get(field_id, ""))
            sync = FieldSync(field_id, definition.type, self.buffer, self.edit_state,
                             self.scheduler, self.current_token, self.debounce)
            sync.mount()
            self.fields[field_id] = MountedField(field_id, definition, validators, sync, section.title)

        self.scheduler.call_every(VALIDITY_TASK_KEY, self.validity_poll, self.recompute_validity)
        self._transition(FormState.ACTIVE)
        self.recompute_validity()
        logger.info(f"Form activated with schema version {self.schema_version} "
                    f"({len(self.fields)} fields)")

    # -- editing ------------------------------------------------------------

    def set_value(self, field_id: str, value: Any) -> None:
        """Route a user edit into the live buffer."""
        if field_id not in self.fields:
            logger.warning(f"Ignoring edit for unknown field: {field_id}")
            return
        self.buffer.set_value(field_id, value)

    def _on_buffer_change(self, field_id: str, value: Any) -> None:
        mounted = self.fields.get(field_id)
        if mounted is None:
            return
        if is_empty(value):
            self.touched[field_id] = False
        mounted.sync.observe(value)
        self.recompute_validity()

    def touch(self, field_id: str) -> None:
        """Mark a field as interacted with (blur)."""
        if field_id in self.fields:
            self.touched[field_id] = True
            self.results[field_id] = self.validate_field(field_id)

    def validate_field(self, field_id: str) -> ValidationResult:
        mounted = self.fields[field_id]
        return validate_value(mounted.validators, self.buffer.get_value(field_id))

    def recompute_validity(self) -> bool:
        """Re-run every field's validators against the live buffer."""
        self.results = {field_id: self.validate_field(field_id) for field_id in self.fields}
        self.is_valid = all(r.valid for r in self.results.values())
        return self.is_valid

    def visible_error(self, field_id: str) -> Optional[str]:
        """The error to display for a field: first failure, only once touched."""
        if not self.touched.get(field_id):
            return None
        result = self.results.get(field_id)
        return result.first_error if result else None

    def tick(self) -> int:
        """Run timers that are due."""
        return self.scheduler.run_due()

    def _flush_all(self) -> None:
        for mounted in self.fields.values():
            mounted.sync.flush()

    # -- completion ---------------------------------------------------------

    def completion(self) -> Optional[CompletionStatus]:
        """Progress over the live buffer, the same values validity is computed from."""
        if self.schema is None:
            return None
        return completion(self.schema, self.buffer.get_values(), self.results)

    def status_text(self) -> Optional[str]:
        status = self.completion()
        if status is None:
            return None
        return status_text(status, len(self.edit_state))

    # -- submission ---------------------------------------------------------

    def submit(self) -> Optional[Dict[str, Any]]:
        """
        Submit the form if it is valid.

        Returns:
            The snapshot handed to the presenter, or None if not submitted
        """
        if self.state != FormState.ACTIVE:
            logger.warning(f"Submit ignored in state {self.state.value}")
            return None
        if not self.recompute_validity():
            logger.info("Submit blocked: form has validation errors")
            return None

        self._flush_all()
        snapshot = {k: v for k, v in self.edit_state.values.items() if not is_empty(v)}
        self.last_submission = Submission(snapshot)
        self._transition(FormState.SUBMITTED)
        if self.presenter is not None:
            self.presenter(dict(snapshot), self.confirm_reset)
        logger.info(f"Form submitted with {len(snapshot)} answers")
        return snapshot

    def close_results(self) -> None:
        if self.state == FormState.SUBMITTED:
            self._transition(FormState.ACTIVE)

    # -- reset --------------------------------------------------------------

    def request_reset(self) -> None:
        if self.schema is not None and self.schema.has_fields():
            self.reset_pending = True

    def cancel_reset(self) -> None:
        self.reset_pending = False

    def _bump_token(self) -> int:
        self.scheduler.cancel_prefix("sync:")
        self.reset_token += 1
        return self.reset_token

    def confirm_reset(self) -> None:
        """
        Clear every answer.

        The persisted projection is purged before the in-memory state is
        cleared and the field tree re-armed under a new reset token, so a
        trailing debounced write cannot bring a value back.
        """
        self.reset_pending = False
        self.edit_state.clear()
        token = self._bump_token()
        self.buffer.reset()
        self.touched = {}
        for mounted in self.fields.values():
            mounted.sync.on_reset(token)

        self.last_submission = None
        self.close_results()
        self.recompute_validity()
        logger.info(f"Form reset (token {token})")

    # -- inspection ---------------------------------------------------------

    def get_session_info(self) -> Dict[str, Any]:
        """Summary of the engine state for debugging."""
        return {
            'state': self.state.value,
            'schema_url': self.schema_url,
            'schema_version': self.schema_version,
            'field_count': len(self.fields),
            'saved_values': len(self.edit_state),
            'is_valid': self.is_valid,
            'reset_token': self.reset_token,
            'reset_pending': self.reset_pending,
            'pending_tasks': self.scheduler.pending_keys(),
            'store_available': self.store.is_available,
            'error_message': self.error_message,
        }
