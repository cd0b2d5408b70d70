"""Tests for request template synthesis and the protocol layer EFSM."""

from __future__ import annotations

import logging

import pytest

from workload_efsm.models import (
    ConnectionAttributes,
    GeneratorError,
    InvocationRecord,
    ProtocolExitState,
    RequestTemplate,
    Session,
    SessionLayerEFSM,
)
from workload_efsm.preprocessing import TraceRepository
from workload_efsm.request_synthesis import (
    IdGenerator,
    MalformedQueryError,
    build_protocol_layer_efsm,
    install_protocol_layers,
    split_query,
    synthesise_request_template,
    synthesise_request_templates,
)


SHOP = ConnectionAttributes(
    host="shop.local", port=8080, path="/shop/a", method="GET", encoding="UTF-8", protocol="http",
)


def _record(service: str, query: str, connection: ConnectionAttributes = SHOP) -> InvocationRecord:
    return InvocationRecord(service=service, connection=connection, query_string=query)


# ═══════════════════════════════════════════════════════════════════════════
# Query string parsing
# ═══════════════════════════════════════════════════════════════════════════


class TestSplitQuery:
    def test_pairs_in_order(self) -> None:
        assert split_query("b=2&a=1&b=3") == {"b": ["2", "3"], "a": ["1"]}

    def test_percent_and_plus_decoding(self) -> None:
        assert split_query("q=red+shoes&msg=s3cret%21&na%20me=x") == {
            "q": ["red shoes"],
            "msg": ["s3cret!"],
            "na me": ["x"],
        }

    def test_key_without_value(self) -> None:
        assert split_query("flag&empty=") == {"flag": [None], "empty": [None]}

    def test_empty_pairs_ignored(self) -> None:
        assert split_query("") == {}
        assert split_query("a=1&&b=2&") == {"a": ["1"], "b": ["2"]}

    def test_invalid_escape_raises(self) -> None:
        with pytest.raises(MalformedQueryError):
            split_query("x=%zz")

    def test_invalid_utf8_raises(self) -> None:
        with pytest.raises(MalformedQueryError):
            split_query("x=%FF")


# ═══════════════════════════════════════════════════════════════════════════
# Template synthesis
# ═══════════════════════════════════════════════════════════════════════════


class TestSynthesiseRequestTemplate:
    def test_union_of_observed_values(self) -> None:
        records = [_record("A", "x=1"), _record("A", "x=2"), _record("A", "y=9")]
        template = synthesise_request_template("A", records)
        assert template.parameters == {"x": "1;2;", "y": "9;"}

    def test_duplicate_values_collapse(self) -> None:
        records = [_record("A", "x=1&x=1"), _record("A", "x=1"), _record("A", "x=2")]
        template = synthesise_request_template("A", records)
        assert template.parameter_values == {"x": ("1", "2")}
        assert template.parameters == {"x": "1;2;"}

    def test_no_records_yields_empty_template(self) -> None:
        template = synthesise_request_template("Ghost", [])
        assert template.service_name == "Ghost"
        assert template.connection == ConnectionAttributes()
        assert template.parameters == {}
        assert template.is_empty()

    def test_no_query_string_sentinel_discarded(self) -> None:
        records = [_record("Home", "<no-query-string>"), _record("Home", "lang=en")]
        template = synthesise_request_template("Home", records)
        assert template.parameters == {"lang": "en;"}

    def test_valueless_key_kept(self) -> None:
        template = synthesise_request_template("Checkout", [_record("Checkout", "confirm")])
        assert template.parameter_values == {"confirm": (None,)}
        assert template.parameters == {"confirm": ";"}

    def test_malformed_record_dropped(self, caplog: pytest.LogCaptureFixture) -> None:
        records = [_record("A", "x=1"), _record("A", "x=%zz&y=2"), _record("A", "x=3")]
        with caplog.at_level(logging.WARNING):
            template = synthesise_request_template("A", records)
        assert template.parameters == {"x": "1;3;"}
        assert "Dropping parameters" in caplog.text

    def test_first_connection_wins(self, caplog: pytest.LogCaptureFixture) -> None:
        other = ConnectionAttributes(host="mirror.local", port=9090)
        records = [_record("A", "x=1"), _record("A", "x=2", connection=other)]
        with caplog.at_level(logging.WARNING):
            template = synthesise_request_template("A", records)
        assert template.connection == SHOP
        assert "disagree" in caplog.text

    def test_strict_mode_rejects_disagreement(self) -> None:
        other = ConnectionAttributes(host="mirror.local", port=9090)
        records = [_record("A", "x=1"), _record("A", "x=2", connection=other)]
        with pytest.raises(GeneratorError):
            synthesise_request_template("A", records, strict=True)

    def test_templates_for_repository(self) -> None:
        repository = TraceRepository(sessions=[
            Session("s1", [_record("A", "x=1"), _record("B", "k=v")]),
            Session("s2", [_record("A", "x=2")]),
        ])
        templates = synthesise_request_templates(repository, ["A", "B", "C"])
        assert templates["A"].parameters == {"x": "1;2;"}
        assert templates["B"].parameters == {"k": "v;"}
        assert templates["C"].is_empty()


# ═══════════════════════════════════════════════════════════════════════════
# Protocol layer
# ═══════════════════════════════════════════════════════════════════════════


class TestProtocolLayer:
    def test_single_state_with_exit_transition(self) -> None:
        template = RequestTemplate(service_name="Login", connection=SHOP)
        efsm = build_protocol_layer_efsm(template, IdGenerator("PS"), IdGenerator("R"))

        assert len(efsm.protocol_states) == 1
        state = efsm.protocol_states[0]
        assert efsm.initial_state is state
        assert state.eid == "PS1"
        assert state.request.eid == "R1 (Login)"
        assert state.request.template is template

        assert len(state.outgoing_transitions) == 1
        transition = state.outgoing_transitions[0]
        assert isinstance(transition.target, ProtocolExitState)
        assert transition.target is efsm.exit_state
        assert transition.guard == ""
        assert transition.action == ""

    def test_install_attaches_layer_to_every_state(self) -> None:
        efsm = SessionLayerEFSM()
        efsm.add_state("Home", initial=True)
        efsm.add_state("Login")
        repository = TraceRepository(sessions=[
            Session("s1", [_record("Home", "<no-query-string>"), _record("Login", "user=alice")]),
        ])

        templates = install_protocol_layers(efsm, repository)

        assert set(templates) == {"Home", "Login"}
        request_ids = []
        for state in efsm.application_states:
            assert state.protocol_details is not None
            request_ids.append(state.protocol_details.initial_state.request.eid)
        assert request_ids == ["R1 (Home)", "R2 (Login)"]
        assert templates["Login"].parameters == {"user": "alice;"}
