"""
Unit tests for the form lifecycle state machine.
"""

import asyncio
import json

import pytest

from form_engine.exceptions import LifecycleError, RetrievalError, SchemaTimeoutError
from form_engine.form_lifecycle import VALIDITY_TASK_KEY, FormLifecycle, FormState
from form_engine.scheduler import ManualClock, Scheduler
from form_engine.schema_models import parse_schema
from form_engine.storage import MemoryStorageMedium, PersistentStore, StorageKey

URL = "https://forms.example.com/form_fields"
OTHER_URL = "https://forms.example.com/other_form"

NUMBER_DOCUMENT = [
    {"title": "Profile", "fields": [
        {"type": "input_number", "label": "Age", "rules": {
            "required": {"value": True, "error_message": "Age is required"},
            "min": {"value": 1, "error_message": "Must be at least {{value}}"},
            "max": {"value": 10, "error_message": "Must be at most {{value}}"},
        }},
        {"type": "input", "label": "Nickname"},
    ]}
]


class FakeSource:
    """Schema fetcher returning a fixed document or raising a fixed error."""

    def __init__(self, document=None, error=None):
        self.document = document
        self.error = error
        self.calls = []

    async def fetch_schema(self, url):
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        return parse_schema(self.document)


class ExplodingMedium:

    def get_item(self, key):
        raise OSError("storage disabled")

    def set_item(self, key, value):
        raise OSError("storage disabled")

    def remove_item(self, key):
        raise OSError("storage disabled")


class LifecycleTestCase:
    """Shared setup: memory store, manual clock and a number form source."""

    def setup_method(self):
        self.clock = ManualClock()
        self.medium = MemoryStorageMedium()
        self.store = PersistentStore(self.medium)
        self.source = FakeSource(NUMBER_DOCUMENT)
        self.presented = []
        self.engine = self.make_engine()

    def make_engine(self, store=None, source=None):
        return FormLifecycle(
            store=store or self.store,
            fetch_schema=(source or self.source).fetch_schema,
            scheduler=Scheduler(self.clock),
            presenter=lambda snapshot, clear: self.presented.append((snapshot, clear)),
            debounce=0.5,
            validity_poll=0.5,
            default_url=URL,
        )

    def load(self, engine=None, url=None):
        return asyncio.run((engine or self.engine).load(url))

    def settle(self, engine=None):
        self.clock.advance(1.0)
        (engine or self.engine).tick()


class TestLoading(LifecycleTestCase):

    def test_load_activates_form(self):
        assert self.load() is True
        assert self.engine.state == FormState.ACTIVE
        assert list(self.engine.fields) == ["profile_age", "profile_nickname"]
        assert self.engine.buffer.get_value("profile_age") == ""

    def test_load_persists_schema_and_url(self):
        self.load()
        assert self.store.get(StorageKey.SCHEMA_URL) == URL
        assert self.store.get(StorageKey.FORM_ACTIVE) is True
        assert parse_schema(self.store.get(StorageKey.SCHEMA_DATA)).field_ids() == \
            ["profile_age", "profile_nickname"]

    def test_validity_recheck_is_scheduled(self):
        self.load()
        assert VALIDITY_TASK_KEY in self.engine.scheduler.pending_keys()

    def test_cached_schema_wins(self):
        self.store.set(StorageKey.SCHEMA_DATA, NUMBER_DOCUMENT)
        source = FakeSource(error=RetrievalError("should not be called"))
        engine = self.make_engine(source=source)

        assert self.load(engine, OTHER_URL) is True
        assert source.calls == []
        assert engine.state == FormState.ACTIVE

    def test_corrupt_cache_is_refetched(self):
        self.medium.set_item(StorageKey.SCHEMA_DATA, json.dumps([{"no": "title"}]))

        assert self.load() is True
        assert self.source.calls == [URL]

    def test_retrieval_error(self):
        engine = self.make_engine(source=FakeSource(error=SchemaTimeoutError(url=URL)))

        assert self.load(engine) is False
        assert engine.state == FormState.ERROR
        assert engine.error_message == "Request timeout: The server took too long to respond"
        assert isinstance(engine.last_error, SchemaTimeoutError)
        assert engine.failure_count == 1

    def test_successful_retry_clears_last_error(self):
        self.source.error = RetrievalError("down")
        self.load()
        assert isinstance(self.engine.last_error, RetrievalError)

        self.source.error = None
        asyncio.run(self.engine.retry())
        assert self.engine.last_error is None
        assert self.engine.failure_count == 1

    def test_retry_bypasses_cache(self):
        self.load()
        asyncio.run(self.engine.retry())
        assert self.source.calls == [URL, URL]
        assert self.engine.retry_count == 1

    def test_failed_retry_leaves_mounted_fields(self):
        self.load()
        self.engine.set_value("profile_age", "5")
        self.settle()
        self.source.error = RetrievalError("Error 500: Internal Server Error. boom", url=URL)

        assert asyncio.run(self.engine.retry()) is False
        assert self.engine.state == FormState.ERROR
        assert "profile_age" in self.engine.fields
        assert self.engine.edit_state.get("profile_age") == 5
        assert self.store.get(StorageKey.FORM_DATA) == {"profile_age": 5}

    def test_retry_from_error_recovers(self):
        self.source.error = RetrievalError("down")
        self.load()
        self.source.error = None

        assert asyncio.run(self.engine.retry()) is True
        assert self.engine.state == FormState.ACTIVE

    def test_schema_url_read_from_store(self):
        self.store.set(StorageKey.SCHEMA_URL, OTHER_URL)
        assert self.make_engine().schema_url == OTHER_URL


class TestResume(LifecycleTestCase):

    def test_resume_restores_answers(self):
        self.load()
        self.engine.set_value("profile_age", "7")
        self.settle()

        source = FakeSource(error=RetrievalError("offline"))
        engine = self.make_engine(source=source)

        assert asyncio.run(engine.resume()) is True
        assert source.calls == []
        assert engine.buffer.get_value("profile_age") == 7
        assert engine.is_valid is True

    def test_resume_without_active_form(self):
        assert asyncio.run(self.engine.resume()) is False
        assert self.engine.state == FormState.IDLE

    def test_back_to_main_stops_resume(self):
        self.load()
        self.engine.back_to_main()
        assert asyncio.run(self.make_engine().resume()) is False

    def test_continue_from_cache_resumes_after_restart(self):
        self.load()
        self.engine.set_value("profile_age", "5")
        self.settle()
        self.engine.back_to_main()

        assert self.load(url=URL) is True
        assert self.store.get(StorageKey.FORM_ACTIVE) is True
        assert self.source.calls == [URL]

        restarted = self.make_engine()
        assert asyncio.run(restarted.resume()) is True
        assert restarted.buffer.get_value("profile_age") == 5


class TestEditing(LifecycleTestCase):

    def setup_method(self):
        super().setup_method()
        self.load()

    def test_numeric_scenario(self):
        status = self.engine.completion()
        assert (status.filled_valid_count, status.required_count, status.percent) == (0, 1, 0)
        assert self.engine.is_valid is False

        self.engine.set_value("profile_age", "5")
        assert self.engine.is_valid is True

        self.settle()
        status = self.engine.completion()
        assert (status.filled_valid_count, status.required_count, status.percent) == (1, 1, 100)
        assert self.store.get(StorageKey.FORM_DATA) == {"profile_age": 5}
        assert self.engine.status_text() == "Filled out 1 of 1 required fields (100%)"

    def test_completion_matches_validity_before_write_lands(self):
        self.engine.set_value("profile_age", "5")

        assert "profile_age" not in self.engine.edit_state
        assert self.engine.is_valid is True
        assert self.engine.completion().percent == 100

    def test_out_of_range_value(self):
        self.engine.set_value("profile_age", "11")
        self.settle()

        assert self.engine.is_valid is False
        assert self.engine.completion().filled_valid_count == 0
        assert self.engine.edit_state.get("profile_age") == 11

    def test_errors_hidden_until_touched(self):
        self.engine.set_value("profile_age", "0")
        assert self.engine.visible_error("profile_age") is None

        self.engine.touch("profile_age")
        assert self.engine.visible_error("profile_age") == "Must be at least 1"

    def test_clearing_value_hides_error_again(self):
        self.engine.set_value("profile_age", "0")
        self.engine.touch("profile_age")
        self.engine.set_value("profile_age", "")
        assert self.engine.visible_error("profile_age") is None

    def test_unknown_field_is_ignored(self):
        self.engine.set_value("nope", "x")
        assert not self.engine.buffer.is_registered("nope")

    def test_write_waits_for_debounce(self):
        self.engine.set_value("profile_nickname", "Bo")
        self.clock.advance(0.3)
        self.engine.tick()
        assert "profile_nickname" not in self.engine.edit_state

    def test_back_to_main_flushes_pending_write(self):
        self.engine.set_value("profile_nickname", "Bo")
        self.engine.back_to_main()

        assert self.engine.state == FormState.IDLE
        assert self.store.get(StorageKey.FORM_DATA) == {"profile_nickname": "Bo"}
        assert self.store.get(StorageKey.FORM_ACTIVE) is None
        assert self.store.get(StorageKey.SCHEMA_URL) == URL
        assert self.engine.scheduler.pending_keys() == []


class TestSubmission(LifecycleTestCase):

    def setup_method(self):
        super().setup_method()
        self.load()

    def test_submit_blocked_when_invalid(self):
        assert self.engine.submit() is None
        assert self.engine.state == FormState.ACTIVE
        assert self.presented == []

    def test_submit_flushes_and_presents(self):
        self.engine.set_value("profile_age", "4")
        self.engine.set_value("profile_nickname", "Bo")

        snapshot = self.engine.submit()

        assert snapshot == {"profile_age": 4, "profile_nickname": "Bo"}
        assert self.engine.state == FormState.SUBMITTED
        assert self.presented[0][0] == snapshot
        assert self.store.get(StorageKey.FORM_DATA) == snapshot

    def test_close_results(self):
        self.engine.set_value("profile_age", "4")
        self.engine.submit()
        self.engine.close_results()
        assert self.engine.state == FormState.ACTIVE
        assert self.engine.edit_state.get("profile_age") == 4

    def test_clear_and_restart_from_presenter(self):
        self.engine.set_value("profile_age", "4")
        self.engine.submit()

        _, clear_and_restart = self.presented[0]
        clear_and_restart()

        assert self.engine.state == FormState.ACTIVE
        assert len(self.engine.edit_state) == 0
        assert self.store.get(StorageKey.FORM_DATA) is None

    def test_submit_outside_active_state(self):
        self.engine.back_to_main()
        assert self.engine.submit() is None


class TestReset(LifecycleTestCase):

    def setup_method(self):
        super().setup_method()
        self.load()

    def test_request_and_cancel(self):
        self.engine.request_reset()
        assert self.engine.reset_pending is True
        self.engine.cancel_reset()
        assert self.engine.reset_pending is False

    def test_request_reset_without_fields(self):
        engine = self.make_engine(store=PersistentStore(MemoryStorageMedium()),
                                  source=FakeSource([{"title": "Empty", "fields": []}]))
        self.load(engine)
        engine.request_reset()
        assert engine.reset_pending is False

    def test_confirm_reset_clears_everything(self):
        self.engine.set_value("profile_age", "5")
        self.engine.touch("profile_age")
        self.settle()

        self.engine.request_reset()
        self.engine.confirm_reset()

        assert self.engine.reset_pending is False
        assert len(self.engine.edit_state) == 0
        assert self.store.get(StorageKey.FORM_DATA) is None
        assert self.engine.buffer.get_value("profile_age") == ""
        assert self.engine.touched == {}
        assert self.engine.completion().percent == 0

    def test_pending_write_cannot_resurrect_value(self):
        self.engine.set_value("profile_age", "5")
        self.clock.advance(0.2)

        self.engine.confirm_reset()
        self.settle()
        self.settle()

        assert "profile_age" not in self.engine.edit_state
        assert self.store.get(StorageKey.FORM_DATA) is None

    def test_reset_bumps_token(self):
        before = self.engine.reset_token
        self.engine.confirm_reset()
        assert self.engine.reset_token == before + 1

    def test_edit_after_reset_is_saved(self):
        self.engine.set_value("profile_age", "5")
        self.settle()
        self.engine.confirm_reset()

        self.engine.set_value("profile_age", "5")
        self.settle()
        assert self.store.get(StorageKey.FORM_DATA) == {"profile_age": 5}


class TestGenerateNewForm(LifecycleTestCase):

    def test_colliding_ids_start_empty(self):
        self.load()
        self.engine.set_value("profile_age", "5")
        self.settle()

        assert asyncio.run(self.engine.generate_new_form(OTHER_URL)) is True

        assert self.engine.state == FormState.ACTIVE
        assert self.engine.buffer.get_value("profile_age") == ""
        assert self.store.get(StorageKey.FORM_DATA) is None
        assert self.store.get(StorageKey.SCHEMA_URL) == OTHER_URL
        assert self.source.calls == [URL, OTHER_URL]

    def test_from_idle(self):
        assert asyncio.run(self.engine.generate_new_form(OTHER_URL)) is True
        assert self.engine.schema_url == OTHER_URL

    def test_failure_leaves_no_cache(self):
        self.load()
        self.source.error = RetrievalError("down")

        assert asyncio.run(self.engine.generate_new_form(OTHER_URL)) is False
        assert self.engine.state == FormState.ERROR
        assert self.store.get(StorageKey.SCHEMA_DATA) is None


class TestStorageUnavailable(LifecycleTestCase):

    def test_form_works_in_memory(self):
        engine = self.make_engine(store=PersistentStore(ExplodingMedium()))

        assert self.load(engine) is True
        assert engine.state == FormState.ACTIVE

        engine.set_value("profile_age", "3")
        self.settle(engine)

        assert engine.edit_state.get("profile_age") == 3
        assert engine.completion().percent == 100
        assert engine.submit() == {"profile_age": 3}

    def test_missing_medium(self):
        engine = self.make_engine(store=PersistentStore(None))
        assert self.load(engine) is True
        assert engine.get_session_info()['store_available'] is False


class TestTransitions(LifecycleTestCase):

    def test_illegal_transition_raises(self):
        with pytest.raises(LifecycleError):
            self.engine._transition(FormState.SUBMITTED)

    def test_back_to_main_from_any_state(self):
        self.engine._transition(FormState.LOADING)
        self.engine.back_to_main()
        assert self.engine.state == FormState.IDLE

    def test_session_info(self):
        self.load()
        info = self.engine.get_session_info()
        assert info['state'] == 'active'
        assert info['field_count'] == 2
        assert info['schema_url'] == URL
