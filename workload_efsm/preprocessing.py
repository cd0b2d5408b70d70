"""
Input preprocessing.

Loads the artefacts the generator consumes and exposes them through a
read-only ``TraceRepository``:

  • **Session logs** — recorded invocations per user session.
      – CSV (.csv)  — loaded via pandas, one row per invocation
      – JSON (.json) — ``{"sessions": [{"id": …, "invocations": […]}]}``
  • **Workload bundles** (.json) — the pre-built navigational state
    machine and the Markov-chain behavior models.

Session CSV columns: ``session_id``, ``service`` and ``timestamp`` are
required; ``host``, ``port``, ``path``, ``method``, ``encoding``,
``protocol`` and ``query_string`` are optional.  ``timestamp`` is either
numeric or a date string; dates are parsed with ``pd.to_datetime`` and
stored as epoch milliseconds.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pandas as pd

from workload_efsm.models import (
    BehaviorModel,
    ConnectionAttributes,
    InvocationRecord,
    MarkovState,
    MarkovTransition,
    Service,
    Session,
    SessionLayerEFSM,
)

logger = logging.getLogger(__name__)

REQUIRED_SESSION_COLUMNS: frozenset[str] = frozenset({
    "session_id",
    "service",
    "timestamp",
})

CONNECTION_COLUMNS: tuple[str, ...] = (
    "host",
    "port",
    "path",
    "method",
    "encoding",
    "protocol",
)


# ═══════════════════════════════════════════════════════════════════════════
# Trace repository
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(slots=True)
class TraceRepository:
    """Read-only access to the recorded sessions."""

    sessions: list[Session] = field(default_factory=list)

    def invocations_for_service(self, name: str) -> list[InvocationRecord]:
        """Return every invocation of *name*, in recording order."""
        return [
            inv
            for session in self.sessions
            for inv in session.invocations
            if inv.service == name
        ]

    def alphabet(self) -> set[str]:
        """Return the set of service names appearing in any session."""
        return {inv.service for s in self.sessions for inv in s.invocations}

    def __len__(self) -> int:
        return len(self.sessions)


# ═══════════════════════════════════════════════════════════════════════════
# Session logs
# ═══════════════════════════════════════════════════════════════════════════

def load_session_log(path: str | Path) -> TraceRepository:
    """Load a session log from a ``.csv`` or ``.json`` file."""
    filepath = Path(path)
    ext = filepath.suffix.lower()

    if ext == ".json":
        raw: dict[str, Any] = json.loads(filepath.read_text(encoding="utf-8"))
        return parse_session_log(raw)
    elif ext == ".csv":
        return _load_csv(filepath)
    else:
        raise ValueError(
            f"Unsupported session log format '{ext}'. Expected .csv or .json."
        )


def parse_session_log(raw: dict[str, Any]) -> TraceRepository:
    """Parse a raw JSON dict into a ``TraceRepository``."""
    sessions: list[Session] = []
    for index, raw_session in enumerate(raw["sessions"]):
        session_id = str(raw_session.get("id", index))
        invocations = [
            _invocation_from_mapping(raw_inv, session_id, position)
            for position, raw_inv in enumerate(raw_session["invocations"])
        ]
        sessions.append(Session(session_id=session_id, invocations=invocations))

    repository = TraceRepository(sessions=sessions)
    logger.info(
        "Loaded session log: %d sessions, services = %s",
        len(repository),
        sorted(repository.alphabet()),
    )
    return repository


def _load_csv(filepath: Path) -> TraceRepository:
    """Load a ``.csv`` session log via pandas.

    Invocations are grouped by ``session_id`` (first-appearance order)
    and sorted by ``timestamp`` within each session.
    """
    df = pd.read_csv(str(filepath), dtype={"session_id": str, "query_string": str})

    missing = REQUIRED_SESSION_COLUMNS - set(df.columns)
    if missing:
        raise KeyError(f"Session log is missing required columns: {sorted(missing)}")

    df["timestamp"] = _timestamps_as_int(df["timestamp"])

    sessions: list[Session] = []
    for session_id, session_df in df.groupby("session_id", sort=False):
        session_df = session_df.sort_values("timestamp", kind="stable")
        invocations: list[InvocationRecord] = []
        for _, row in session_df.iterrows():
            values = {col: row[col] for col in df.columns if not pd.isna(row[col])}
            invocations.append(
                _invocation_from_mapping(values, str(session_id), int(row["timestamp"]))
            )
        sessions.append(Session(session_id=str(session_id), invocations=invocations))

    repository = TraceRepository(sessions=sessions)
    logger.info(
        "Loaded session log: %d sessions, services = %s",
        len(repository),
        sorted(repository.alphabet()),
    )
    return repository


def _timestamps_as_int(column: pd.Series) -> pd.Series:
    """Numbers pass through; date strings become epoch milliseconds."""
    if pd.api.types.is_numeric_dtype(column):
        return column.astype("int64")
    try:
        parsed = pd.to_datetime(column, utc=True)
    except (ValueError, TypeError) as exc:
        raise ValueError(
            f"Session log column 'timestamp' is neither numeric nor a date: {exc}"
        ) from exc
    return (parsed - pd.Timestamp(0, tz="UTC")) // pd.Timedelta(milliseconds=1)


def _invocation_from_mapping(
    values: dict[str, Any], session_id: str, default_timestamp: int,
) -> InvocationRecord:
    connection = ConnectionAttributes(
        host=str(values.get("host", "")),
        port=int(values.get("port", 0)),
        path=str(values.get("path", "")),
        method=str(values.get("method", "")),
        encoding=str(values.get("encoding", "")),
        protocol=str(values.get("protocol", "")),
    )
    return InvocationRecord(
        service=str(values["service"]),
        connection=connection,
        query_string=str(values.get("query_string", "")),
        session_id=session_id,
        timestamp=int(values.get("timestamp", default_timestamp)),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Workload bundles
# ═══════════════════════════════════════════════════════════════════════════

def load_workload(path: str | Path) -> tuple[SessionLayerEFSM, list[BehaviorModel]]:
    """Load the navigational state machine and behavior models from JSON.

    Expected layout::

        {
          "session_layer": {
            "initial": "Home",
            "states": ["Home", "Cart", ...],
            "transitions": [{"source": "Home", "target": "Cart"},
                            {"source": "Cart", "target": null}, ...]
          },
          "behavior_models": [
            {"name": "browser", "frequency": 0.7, "initial": "Home",
             "transitions": [{"source": "Home", "target": "Cart",
                              "probability": 0.4}, ...]}
          ]
        }

    A ``null`` target denotes the exit state.
    """
    raw: dict[str, Any] = json.loads(Path(path).read_text(encoding="utf-8"))
    efsm = parse_session_layer(raw["session_layer"])
    behavior_models = [parse_behavior_model(bm) for bm in raw.get("behavior_models", [])]
    return efsm, behavior_models


def parse_session_layer(raw: dict[str, Any]) -> SessionLayerEFSM:
    """Build a ``SessionLayerEFSM`` from its JSON description."""
    efsm = SessionLayerEFSM()
    for name in raw["states"]:
        efsm.add_state(name)

    initial = raw.get("initial")
    if initial is not None:
        if efsm.state_for_service(initial) is None:
            raise KeyError(f"Initial state '{initial}' is not a declared state.")
        efsm.add_state(initial, initial=True)

    for raw_t in raw.get("transitions", []):
        source = efsm.state_for_service(raw_t["source"])
        if source is None:
            raise KeyError(f"Transition source '{raw_t['source']}' is not a declared state.")
        target_name = raw_t.get("target")
        if target_name is None:
            efsm.add_transition(source, efsm.exit_state)
            continue
        target = efsm.state_for_service(target_name)
        if target is None:
            raise KeyError(f"Transition target '{target_name}' is not a declared state.")
        efsm.add_transition(source, target)

    logger.debug(
        "Parsed session layer: %d states, %d transitions",
        len(efsm.application_states),
        sum(1 for _ in efsm.transitions()),
    )
    return efsm


def parse_behavior_model(raw: dict[str, Any]) -> BehaviorModel:
    """Build a ``BehaviorModel`` from its JSON description.

    Markov states are created on demand for every service mentioned by
    a transition (and for the initial service).
    """
    model = BehaviorModel(name=raw["name"], frequency=float(raw.get("frequency", 1.0)))
    states: dict[str, MarkovState] = {}

    def state_for(name: str) -> MarkovState:
        if name not in states:
            state = MarkovState(eid=f"MSId{len(states) + 1}", service=Service(name))
            states[name] = state
            model.markov_states.append(state)
        return states[name]

    if raw.get("initial") is not None:
        model.initial_state = state_for(raw["initial"])

    for raw_t in raw.get("transitions", []):
        source = state_for(raw_t["source"])
        target_name = raw_t.get("target")
        target = model.exit_state if target_name is None else state_for(target_name)
        source.outgoing_transitions.append(
            MarkovTransition(
                target=target,
                probability=float(raw_t.get("probability", 1.0)),
                think_time_mean=float(raw_t.get("think_time_mean", 0.0)),
                think_time_deviation=float(raw_t.get("think_time_deviation", 0.0)),
            )
        )
    return model
