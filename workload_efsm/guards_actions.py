"""
Step 4 — Guard & Action Synthesis from Temporal Invariants.

Translates mined binary invariants  inv(a, b)  into guards and actions
on the transitions of the session layer EFSM, so that generated
sessions respect the temporal regularities of the recorded ones:

  • **Always-precedes**  (a before every b):
        boolean parameter  a;  every transition entering a sets it,
        every transition entering b requires it.
  • **Never-followed**   (no b after a):
        boolean parameter  a;  every transition entering b requires it
        to be unset.  Only installed when a path a ⇝ b exists, and
        only when explicitly enabled.
  • **Counting**         (#a − #b ≥ d  in every session):
        integer parameter  ab;  transitions entering a or b update it,
        transitions entering b require  ab > d.

Invariants are first filtered for redundancy, then checked for
necessity: an invariant whose second state is only reachable directly
from its first state is already enforced by the topology.

Mutation is append-only: guards, actions and parameters are added,
never removed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from workload_efsm.invariants import filter_redundant_invariants
from workload_efsm.models import (
    Action,
    ApplicationState,
    ApplicationTransition,
    Guard,
    GuardActionParameter,
    Invariant,
    InvariantKind,
    ParameterType,
    SessionLayerEFSM,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TranslationReport:
    """Counts of what one translation run did."""

    invariants: int = 0
    installed: int = 0
    skipped_unresolved: int = 0
    skipped_unneeded: int = 0
    skipped_unreachable: int = 0
    skipped_disabled: int = 0
    guards_added: int = 0
    actions_added: int = 0


# ═══════════════════════════════════════════════════════════════════════════
# 1.  Top-level entry point
# ═══════════════════════════════════════════════════════════════════════════

def install_guards_and_actions(
    efsm: SessionLayerEFSM,
    invariants: Iterable[Invariant],
    *,
    enable_never_followed: bool = False,
) -> TranslationReport:
    """Annotate the transitions of *efsm* with invariant-derived guards/actions.

    Parameters
    ----------
    efsm : SessionLayerEFSM
        The (pruned) navigational state machine; mutated in place.
    invariants : Iterable[Invariant]
        Mined invariants.  An empty collection leaves *efsm* untouched.
    enable_never_followed : bool
        Whether never-followed invariants are translated.  Default is
        ``False``: they are counted as skipped.

    Returns
    -------
    TranslationReport
        Summary of installed and skipped invariants.
    """
    report = TranslationReport()
    remaining = filter_redundant_invariants(invariants)
    report.invariants = len(remaining)

    for invariant in remaining:
        first = efsm.state_for_service(invariant.first)
        if first is None:
            logger.debug("         skip %s: '%s' is not an application state", invariant, invariant.first)
            report.skipped_unresolved += 1
            continue
        second = efsm.state_for_service(invariant.second)

        action_transitions = efsm.transitions_into(invariant.first)
        guard_transitions = efsm.transitions_into(invariant.second)

        if not guards_are_needed(guard_transitions, first, invariant):
            logger.debug("         skip %s: enforced by topology", invariant)
            report.skipped_unneeded += 1
            continue

        match invariant.kind:
            case InvariantKind.ALWAYS_PRECEDES:
                _install_always_precedes(
                    efsm, first, action_transitions, guard_transitions, report,
                )
            case InvariantKind.NEVER_FOLLOWED:
                if not enable_never_followed:
                    report.skipped_disabled += 1
                    continue
                if second is None or not path_exists(efsm, first, second):
                    logger.debug("         skip %s: no path between the states", invariant)
                    report.skipped_unreachable += 1
                    continue
                _install_never_followed(
                    efsm, first, action_transitions, guard_transitions, report,
                )
            case InvariantKind.COUNTING:
                _install_counting(
                    efsm,
                    invariant,
                    action_transitions,
                    guard_transitions,
                    report,
                )

        report.installed += 1
        logger.debug("         installed %s", invariant)

    return report


# ═══════════════════════════════════════════════════════════════════════════
# 2.  Necessity & reachability
# ═══════════════════════════════════════════════════════════════════════════

def guards_are_needed(
    guard_transitions: list[ApplicationTransition],
    first: ApplicationState,
    invariant: Invariant,
) -> bool:
    """Decide whether *invariant* needs guards at all.

    No guard transitions (e.g. the second state is the initial state
    or absent) → nothing to guard.  A single guard transition leaving
    the first state → the topology already enforces the invariant,
    unless it is a counting invariant with a nonzero minimum
    difference.
    """
    if not guard_transitions:
        return False

    if len(guard_transitions) == 1 and guard_transitions[0].source is first:
        return (
            invariant.kind is InvariantKind.COUNTING
            and invariant.minimum_difference != 0
        )
    return True


def path_exists(
    efsm: SessionLayerEFSM,
    first: ApplicationState,
    second: ApplicationState,
) -> bool:
    """Return ``True`` iff *second* is reachable from *first*.

    Depth-first search over application transitions with an explicit
    stack; the exit state is not traversed.  A path needs at least one
    transition, so ``first is second`` only holds on a cycle.
    """
    visited: set[int] = {id(first)}
    stack: list[ApplicationState] = [first]

    while stack:
        state = stack.pop()
        for t in state.outgoing_transitions:
            target = t.target
            if not isinstance(target, ApplicationState):
                continue
            if target is second:
                return True
            if id(target) not in visited:
                visited.add(id(target))
                stack.append(target)
    return False


# ═══════════════════════════════════════════════════════════════════════════
# 3.  Per-kind installation
# ═══════════════════════════════════════════════════════════════════════════

def _install_always_precedes(
    efsm: SessionLayerEFSM,
    first: ApplicationState,
    action_transitions: list[ApplicationTransition],
    guard_transitions: list[ApplicationTransition],
    report: TranslationReport,
) -> None:
    name = first.service.name
    parameter = efsm.get_or_create_parameter(name, ParameterType.BOOLEAN, name)
    _add_actions(action_transitions, parameter, report)
    _add_guards(guard_transitions, parameter, True, None, report)


def _install_never_followed(
    efsm: SessionLayerEFSM,
    first: ApplicationState,
    action_transitions: list[ApplicationTransition],
    guard_transitions: list[ApplicationTransition],
    report: TranslationReport,
) -> None:
    name = first.service.name
    parameter = efsm.get_or_create_parameter(name, ParameterType.BOOLEAN, name)
    _add_actions(action_transitions, parameter, report)
    _add_guards(guard_transitions, parameter, False, None, report)


def _install_counting(
    efsm: SessionLayerEFSM,
    invariant: Invariant,
    action_transitions: list[ApplicationTransition],
    guard_transitions: list[ApplicationTransition],
    report: TranslationReport,
) -> None:
    parameter = efsm.get_or_create_parameter(
        invariant.first + invariant.second,
        ParameterType.INTEGER,
        invariant.first,
        invariant.second,
    )
    # Both sides move the counter.
    _add_actions(action_transitions, parameter, report)
    _add_actions(guard_transitions, parameter, report)
    _add_guards(guard_transitions, parameter, True, invariant.minimum_difference, report)


def _add_actions(
    transitions: list[ApplicationTransition],
    parameter: GuardActionParameter,
    report: TranslationReport,
) -> None:
    for t in transitions:
        if t.has_action_for(parameter):
            continue
        t.actions.append(Action(parameter=parameter))
        report.actions_added += 1


def _add_guards(
    transitions: list[ApplicationTransition],
    parameter: GuardActionParameter,
    negate: bool,
    diff_minimum: Optional[int],
    report: TranslationReport,
) -> None:
    for t in transitions:
        t.guards.append(Guard(parameter=parameter, negate=negate, diff_minimum=diff_minimum))
        report.guards_added += 1
