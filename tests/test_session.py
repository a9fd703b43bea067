"""
Tests for firebolt_client.session.
"""

import pytest

from firebolt_client.session import (
    HeaderProtocolHandler,
    HeaderSignals,
    SessionState,
    apply_signals,
    parse_signals,
    split_endpoint,
)
from firebolt_client.types import HeaderParsingError


@pytest.fixture
def state():
    return SessionState(
        endpoint="https://old.firebolt.io",
        parameters={"database": "d1", "engine": "e1", "foo": "bar"},
    )


class TestSplitEndpoint:
    """Tests for endpoint URL splitting."""

    def test_plain(self):
        assert split_endpoint("https://e.firebolt.io/path") == ("https://e.firebolt.io/path", {})

    def test_query_parameters(self):
        base, params = split_endpoint("https://e.firebolt.io?engine=e1&account_id=42")
        assert base == "https://e.firebolt.io"
        assert params == {"engine": "e1", "account_id": "42"}

    def test_scheme_added(self):
        assert split_endpoint("e.firebolt.io")[0] == "https://e.firebolt.io"

    def test_empty(self):
        with pytest.raises(HeaderParsingError):
            split_endpoint("  ")

    def test_malformed_query(self):
        with pytest.raises(HeaderParsingError):
            split_endpoint("https://e.firebolt.io?novalue")


class TestParseSignals:
    """Tests for header parsing."""

    def test_no_signals(self):
        signals = parse_signals([("Content-Type", "application/json")])
        assert signals.empty

    def test_update_parameters(self):
        signals = parse_signals([("Firebolt-Update-Parameters", "a=1, b=two")])
        assert signals.update_parameters == {"a": "1", "b": "two"}

    def test_repeated_update_headers_accumulate(self):
        signals = parse_signals([
            ("Firebolt-Update-Parameters", "a=1"),
            ("Firebolt-Update-Parameters", "b=2"),
        ])
        assert signals.update_parameters == {"a": "1", "b": "2"}

    def test_remove_parameters(self):
        signals = parse_signals([("Firebolt-Remove-Parameters", "a, b,")])
        assert signals.remove_parameters == ("a", "b")

    def test_reset(self):
        assert parse_signals([("Firebolt-Reset-Session", "")]).reset_session

    def test_last_endpoint_wins(self):
        signals = parse_signals([
            ("Firebolt-Update-Endpoint", "https://one.firebolt.io"),
            ("Firebolt-Update-Endpoint", "https://two.firebolt.io?engine=two"),
        ])
        assert signals.endpoint == "https://two.firebolt.io"
        assert signals.endpoint_parameters == {"engine": "two"}

    def test_names_are_case_sensitive(self):
        assert parse_signals([("firebolt-update-parameters", "a=1")]).empty

    def test_malformed_pair(self):
        with pytest.raises(HeaderParsingError):
            parse_signals([("Firebolt-Update-Parameters", "a=1,broken")])

    def test_missing_key(self):
        with pytest.raises(HeaderParsingError):
            parse_signals([("Firebolt-Update-Parameters", "=1")])


class TestApplySignals:
    """Tests for folding signals into session state."""

    def test_endpoint_replaced(self, state):
        new = apply_signals(state, HeaderSignals(endpoint="https://new.firebolt.io"))
        assert new.endpoint == "https://new.firebolt.io"
        assert new.parameters == state.parameters

    def test_endpoint_parameters_merged(self, state):
        new = apply_signals(state, HeaderSignals(
            endpoint="https://new.firebolt.io",
            endpoint_parameters={"engine": "e2"},
        ))
        assert new.parameters["engine"] == "e2"

    def test_merge_overwrites(self, state):
        new = apply_signals(state, HeaderSignals(update_parameters={"foo": "baz", "x": "1"}))
        assert new.parameters == {"database": "d1", "engine": "e1", "foo": "baz", "x": "1"}

    def test_reset_keeps_selection(self, state):
        new = apply_signals(state, HeaderSignals(reset_session=True))
        assert new.parameters == {"database": "d1", "engine": "e1"}

    def test_removal_ignores_absent_keys(self, state):
        new = apply_signals(state, HeaderSignals(remove_parameters=("foo", "missing")))
        assert new.parameters == {"database": "d1", "engine": "e1"}

    def test_endpoint_and_removal_together(self, state):
        new = apply_signals(state, HeaderSignals(
            endpoint="https://new.firebolt.io",
            remove_parameters=("foo",),
        ))
        assert new.endpoint == "https://new.firebolt.io"
        assert "foo" not in new.parameters

    def test_fixed_order(self, state):
        # merge precedes reset, reset precedes removal
        new = apply_signals(state, HeaderSignals(
            update_parameters={"tmp": "1", "database": "d2"},
            reset_session=True,
            remove_parameters=("engine",),
        ))
        assert new.parameters == {"database": "d2"}

    def test_input_state_untouched(self, state):
        apply_signals(state, HeaderSignals(reset_session=True))
        assert state.parameters["foo"] == "bar"


class TestHeaderProtocolHandler:
    """Tests for the combined parse and apply step."""

    def test_handle(self, state):
        handler = HeaderProtocolHandler()
        new = handler.handle(state, [
            ("Firebolt-Remove-Parameters", "foo"),
            ("Firebolt-Update-Endpoint", "https://new.firebolt.io"),
        ])
        assert new.endpoint == "https://new.firebolt.io"
        assert new.parameters == {"database": "d1", "engine": "e1"}

    def test_no_signals_returns_same_state(self, state):
        assert HeaderProtocolHandler().handle(state, []) is state

    def test_malformed_headers_apply_nothing(self, state):
        handler = HeaderProtocolHandler()
        with pytest.raises(HeaderParsingError):
            handler.handle(state, [
                ("Firebolt-Update-Endpoint", "https://new.firebolt.io"),
                ("Firebolt-Update-Parameters", "garbage"),
            ])
        assert state.endpoint == "https://old.firebolt.io"

    def test_custom_preserved_keys(self, state):
        new = HeaderProtocolHandler(preserved=["foo"]).handle(
            state, [("Firebolt-Reset-Session", "true")]
        )
        assert new.parameters == {"foo": "bar"}
