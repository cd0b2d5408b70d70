"""
Step 1 — Request Template Synthesis.

Merges all recorded invocations of one service into a single
parameterised request description and wraps it into a protocol
layer EFSM:

  1.  Connection attributes are taken from the first invocation.
  2.  Every invocation's query string is split into name/value
      pairs; per name, the distinct values are accumulated in
      discovery order.
  3.  The template becomes the request of a single protocol state
      whose only transition leads to the protocol exit state.

Invocations whose query string cannot be decoded are skipped;
synthesis continues with the remaining records.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional, Sequence
from urllib.parse import unquote_plus

from workload_efsm.models import (
    NO_QUERY_STRING,
    ConnectionAttributes,
    GeneratorError,
    InvocationRecord,
    ProtocolLayerEFSM,
    ProtocolState,
    ProtocolTransition,
    Request,
    RequestTemplate,
    SessionLayerEFSM,
)
from workload_efsm.preprocessing import TraceRepository

logger = logging.getLogger(__name__)

_INVALID_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


class MalformedQueryError(ValueError):
    """Raised when a query string contains an undecodable escape."""


# ═══════════════════════════════════════════════════════════════════════════
# 1.  Query string parsing
# ═══════════════════════════════════════════════════════════════════════════

def split_query(query_string: str) -> dict[str, list[Optional[str]]]:
    """Split *query_string* into ``name → [values]`` (first-seen order).

    A pair without ``=`` (or with nothing after it) contributes a
    ``None`` value.  Empty pairs (``a=1&&b=2``) are ignored.

    Raises ``MalformedQueryError`` on a broken percent escape or on
    bytes that are not valid UTF-8.
    """
    pairs: dict[str, list[Optional[str]]] = {}
    for pair in query_string.split("&"):
        if not pair:
            continue
        name, sep, raw_value = pair.partition("=")
        key = _decode(name if sep and name else pair)
        value = _decode(raw_value) if sep and name and raw_value else None
        pairs.setdefault(key, []).append(value)
    return pairs


def _decode(text: str) -> str:
    if _INVALID_ESCAPE.search(text):
        raise MalformedQueryError(f"Invalid percent escape in '{text}'")
    try:
        return unquote_plus(text, encoding="utf-8", errors="strict")
    except UnicodeDecodeError as exc:
        raise MalformedQueryError(f"Undecodable bytes in '{text}'") from exc


# ═══════════════════════════════════════════════════════════════════════════
# 2.  Template synthesis
# ═══════════════════════════════════════════════════════════════════════════

def synthesise_request_template(
    service_name: str,
    records: Sequence[InvocationRecord],
    *,
    strict: bool = False,
) -> RequestTemplate:
    """Merge *records* (all invocations of *service_name*) into a template.

    Parameters
    ----------
    service_name : str
        The service the records belong to.
    records : Sequence[InvocationRecord]
        Observed invocations, in recording order.  May be empty.
    strict : bool
        When ``True``, a record whose connection attributes differ
        from the first record's raises ``GeneratorError``; otherwise
        the disagreement is logged and the first record wins.

    Returns
    -------
    RequestTemplate
        Empty (default connection, no parameters) if *records* is empty.
    """
    if not records:
        logger.debug("No invocations recorded for service '%s'", service_name)
        return RequestTemplate(service_name=service_name)

    connection = records[0].connection
    _check_connection_attributes(service_name, connection, records, strict)

    values: dict[str, dict[Optional[str], None]] = {}
    for record in records:
        try:
            pairs = split_query(record.query_string)
        except MalformedQueryError as exc:
            logger.warning(
                "Dropping parameters of '%s' invocation in session %s: %s",
                service_name,
                record.session_id or "?",
                exc,
            )
            continue

        for name, observed in pairs.items():
            if name == NO_QUERY_STRING:
                continue
            bucket = values.setdefault(name, {})
            for value in observed:
                bucket.setdefault(value, None)

    return RequestTemplate(
        service_name=service_name,
        connection=connection,
        parameter_values={name: tuple(bucket) for name, bucket in values.items()},
    )


def synthesise_request_templates(
    repository: TraceRepository,
    service_names: Iterable[str],
    *,
    strict: bool = False,
) -> dict[str, RequestTemplate]:
    """Synthesise one template per service in *service_names*."""
    return {
        name: synthesise_request_template(
            name, repository.invocations_for_service(name), strict=strict,
        )
        for name in service_names
    }


def _check_connection_attributes(
    service_name: str,
    connection: ConnectionAttributes,
    records: Sequence[InvocationRecord],
    strict: bool,
) -> None:
    disagreeing = [r for r in records[1:] if r.connection != connection]
    if not disagreeing:
        return

    message = (
        f"{len(disagreeing)} invocation(s) of '{service_name}' disagree with the "
        f"first observed connection attributes {connection}; "
        f"e.g. {disagreeing[0].connection}"
    )
    if strict:
        raise GeneratorError(message)
    logger.warning("%s — keeping the first observation", message)


# ═══════════════════════════════════════════════════════════════════════════
# 3.  Protocol layer EFSM
# ═══════════════════════════════════════════════════════════════════════════

class IdGenerator:
    """Monotonic id generator producing "<prefix>1", "<prefix>2", …"""

    def __init__(self, prefix: str) -> None:
        self._prefix = prefix
        self._n: int = 0

    def next(self) -> str:
        self._n += 1
        return f"{self._prefix}{self._n}"


def build_protocol_layer_efsm(
    template: RequestTemplate,
    state_ids: IdGenerator,
    request_ids: IdGenerator,
) -> ProtocolLayerEFSM:
    """Wrap *template* into a single-state protocol EFSM.

    The protocol state issues the request and has exactly one
    transition, without guard or action, to the exit state.
    """
    efsm = ProtocolLayerEFSM()
    request = Request(
        eid=f"{request_ids.next()} ({template.service_name})",
        template=template,
    )
    state = ProtocolState(eid=state_ids.next(), request=request)
    state.outgoing_transitions.append(ProtocolTransition(target=efsm.exit_state))

    efsm.protocol_states.append(state)
    efsm.initial_state = state
    return efsm


def install_protocol_layers(
    efsm: SessionLayerEFSM,
    repository: TraceRepository,
    *,
    strict: bool = False,
) -> dict[str, RequestTemplate]:
    """Attach a protocol EFSM to every application state of *efsm*.

    Returns the synthesised templates keyed by service name.
    """
    state_ids = IdGenerator("PS")
    request_ids = IdGenerator("R")
    templates: dict[str, RequestTemplate] = {}

    for state in efsm.application_states:
        name = state.service.name
        template = synthesise_request_template(
            name, repository.invocations_for_service(name), strict=strict,
        )
        if template.is_empty():
            logger.warning("Service '%s' has no observed traffic — empty request", name)
        state.protocol_details = build_protocol_layer_efsm(template, state_ids, request_ids)
        templates[name] = template

    return templates
