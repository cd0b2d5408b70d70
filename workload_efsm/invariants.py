"""
Step 3 — Temporal Invariant Acquisition.

Invariants are mined by an external component; this module defines
the contract such a miner fulfils and turns its output into the
``Invariant`` records consumed by guard/action translation:

  • ``InvariantMiner``       — the miner protocol.
  • ``DeclareInvariantMiner`` — adapter over pm4py's Declare discovery
                               (``precedence`` constraints only).
  • ``StaticInvariantMiner``  — invariants mined elsewhere, e.g. loaded
                               from JSON via ``load_invariants``.
  • ``acquire_invariants``    — failure-tolerant mining: any miner error
                               is logged and yields no invariants.
  • ``filter_redundant_invariants`` — a counting invariant over (a, b)
                               subsumes an always-precedes one.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol

import pandas as pd
import pm4py

from workload_efsm.models import Invariant, InvariantKind
from workload_efsm.preprocessing import TraceRepository

logger = logging.getLogger(__name__)

MinerConfiguration = Mapping[str, Any]
"""Opaque key/value options handed to the miner unexamined."""


# ═══════════════════════════════════════════════════════════════════════════
# 1.  Miner protocol & implementations
# ═══════════════════════════════════════════════════════════════════════════

class InvariantMiner(Protocol):
    """Mines binary temporal invariants over the trace alphabet."""

    def mine(
        self,
        repository: TraceRepository,
        configuration: MinerConfiguration,
    ) -> Iterable[Invariant]:
        """Return the invariants holding in every session of *repository*."""
        ...


class StaticInvariantMiner:
    """Returns a fixed, externally mined set of invariants."""

    def __init__(self, invariants: Iterable[Invariant]) -> None:
        self._invariants = list(invariants)

    def mine(
        self,
        repository: TraceRepository,
        configuration: MinerConfiguration,
    ) -> list[Invariant]:
        return list(self._invariants)


DECLARE_TEMPLATES: dict[str, InvariantKind] = {
    "precedence": InvariantKind.ALWAYS_PRECEDES,
}
"""pm4py Declare template name → invariant kind.

pm4py derives ``nonsuccession`` as the negation of ``succession``, which
is not the never-followed relation, so it has no entry here.
"""

DECLARE_THRESHOLDS: dict[str, float] = {
    "min_support_ratio": 0.0,
    "min_confidence_ratio": 1.0,
}
"""A constraint is kept only if no activated session violates it."""


class DeclareInvariantMiner:
    """Mines invariants with pm4py's Declare constraint discovery.

    The sessions are converted into an XES-style DataFrame and passed
    to ``pm4py.discover_declare`` with full-confidence thresholds; the
    configuration is forwarded as keyword arguments on top of them
    (e.g. ``considered_activities``).  Each returned constraint is then
    replayed against the sessions, so every invariant holds in every
    recorded session.  Declare has no counting template and no
    faithful never-followed template, so this miner yields
    ``ALWAYS_PRECEDES`` invariants only.
    """

    def mine(
        self,
        repository: TraceRepository,
        configuration: MinerConfiguration,
    ) -> list[Invariant]:
        df = sessions_to_dataframe(repository)
        if df.empty:
            return []

        options: dict[str, Any] = {
            "allowed_templates": set(DECLARE_TEMPLATES),
            **DECLARE_THRESHOLDS,
        }
        options.update(configuration)
        declare_model = pm4py.discover_declare(
            df,
            activity_key="concept:name",
            timestamp_key="time:timestamp",
            case_id_key="case:concept:name",
            **options,
        )
        return [
            inv
            for inv in invariants_from_declare(declare_model)
            if _precedes_in_every_session(inv, repository)
        ]


def _precedes_in_every_session(invariant: Invariant, repository: TraceRepository) -> bool:
    """True iff every session that reaches b has an earlier a."""
    for session in repository.sessions:
        names = session.service_names()
        if invariant.second not in names:
            continue
        if invariant.first not in names[: names.index(invariant.second)]:
            logger.debug(
                "         dropped %s (violated in session %s)", invariant, session.session_id,
            )
            return False
    return True


def sessions_to_dataframe(repository: TraceRepository) -> pd.DataFrame:
    """Flatten the sessions into an XES-style event DataFrame.

    Timestamps are synthesised from the position within the session so
    that the event order survives pm4py's timestamp sorting.
    """
    rows: list[dict[str, Any]] = []
    for session in repository.sessions:
        for position, invocation in enumerate(session.invocations):
            rows.append({
                "case:concept:name": session.session_id,
                "concept:name": invocation.service,
                "time:timestamp": pd.Timestamp(position, unit="s"),
            })
    return pd.DataFrame(rows, columns=["case:concept:name", "concept:name", "time:timestamp"])


def invariants_from_declare(declare_model: Mapping[str, Mapping[Any, Any]]) -> list[Invariant]:
    """Translate a pm4py Declare model into binary invariants.

    Templates without an invariant counterpart and unary constraints
    are ignored.  The result is sorted for deterministic processing.
    """
    invariants: list[Invariant] = []
    for template, constraints in declare_model.items():
        kind = DECLARE_TEMPLATES.get(template)
        if kind is None:
            continue
        for key in constraints:
            if isinstance(key, tuple) and len(key) == 2:
                invariants.append(Invariant(kind=kind, first=str(key[0]), second=str(key[1])))
    return sorted(invariants, key=lambda inv: (inv.kind.value, inv.first, inv.second))


# ═══════════════════════════════════════════════════════════════════════════
# 2.  JSON invariant files
# ═══════════════════════════════════════════════════════════════════════════

def load_invariants(path: str | Path) -> list[Invariant]:
    """Load invariants from a JSON list of records.

    Each record has ``kind`` (``always_precedes`` | ``never_followed`` |
    ``counting``), ``first``, ``second`` and, for counting invariants,
    ``minimum_difference``.
    """
    raw: list[dict[str, Any]] = json.loads(Path(path).read_text(encoding="utf-8"))
    return [parse_invariant(record) for record in raw]


def parse_invariant(record: Mapping[str, Any]) -> Invariant:
    try:
        kind = InvariantKind(record["kind"])
    except ValueError as exc:
        raise ValueError(f"Unknown invariant kind '{record['kind']}'") from exc
    return Invariant(
        kind=kind,
        first=str(record["first"]),
        second=str(record["second"]),
        minimum_difference=int(record.get("minimum_difference", 0)),
    )


# ═══════════════════════════════════════════════════════════════════════════
# 3.  Acquisition & filtering
# ═══════════════════════════════════════════════════════════════════════════

def acquire_invariants(
    miner: InvariantMiner | None,
    repository: TraceRepository,
    configuration: MinerConfiguration | None = None,
) -> list[Invariant]:
    """Run *miner* and return its invariants.

    A missing miner, a miner error or an empty result all yield ``[]``;
    guard/action generation then proceeds without invariants.
    """
    if miner is None:
        logger.info("No invariant miner configured — guards and actions skipped")
        return []

    try:
        invariants = list(miner.mine(repository, configuration or {}))
    except Exception:
        logger.exception(
            "Invariant mining failed; guards and actions cannot be generated",
        )
        return []

    if not invariants:
        logger.info("Invariant miner returned no invariants")
    return invariants


def filter_redundant_invariants(invariants: Iterable[Invariant]) -> list[Invariant]:
    """Drop always-precedes invariants subsumed by a counting invariant.

    ALWAYS_PRECEDES(a, b) is redundant when COUNTING(a, b) exists for
    the identical ordered pair.  Order of the remaining invariants is
    preserved.
    """
    invariants = list(invariants)
    counted = {
        (inv.first, inv.second)
        for inv in invariants
        if inv.kind is InvariantKind.COUNTING
    }
    kept: list[Invariant] = []
    for inv in invariants:
        if inv.kind is InvariantKind.ALWAYS_PRECEDES and (inv.first, inv.second) in counted:
            logger.debug("         dropped %s (subsumed by counting invariant)", inv)
            continue
        kept.append(inv)
    return kept
