"""
Step 5 — Guard & Action Semantics and Verification.

Gives the guards and actions of a session layer EFSM an executable
meaning in Z3:

  • BOOLEAN parameter p  ↦  ``Bool(p)``, initially false;
    an action sets it to true.
  • INTEGER parameter p  ↦  ``Int(p)``,  initially 0;
    an action increments it on transitions entering p's source
    service and decrements it on transitions entering its target
    service.
  • Guard (p, negate, d):
        BOOLEAN:  p            if negate else  ¬p
        INTEGER:  p > d        if negate else  ¬(p > d)

On top of this, two checks are provided:

  • ``unsatisfiable_transitions`` — transitions whose guard
    conjunction can never hold (dead edges).
  • ``verify_sessions`` — replays the recorded sessions through the
    EFSM and reports those that cannot be replayed.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

import z3

from workload_efsm.models import (
    Action,
    ApplicationTransition,
    Guard,
    GuardActionParameter,
    ParameterType,
    Session,
    SessionLayerEFSM,
)
from workload_efsm.preprocessing import TraceRepository

logger = logging.getLogger(__name__)

Value = Union[bool, int]
Valuation = dict[str, Value]


# ═══════════════════════════════════════════════════════════════════════════
# 1.  Formulas
# ═══════════════════════════════════════════════════════════════════════════

def parameter_variable(parameter: GuardActionParameter) -> z3.ExprRef:
    """Return the Z3 variable standing for *parameter*."""
    if parameter.parameter_type is ParameterType.BOOLEAN:
        return z3.Bool(parameter.name)
    return z3.Int(parameter.name)


def guard_formula(guard: Guard) -> z3.BoolRef:
    """Compile *guard* into a Z3 Boolean expression."""
    var = parameter_variable(guard.parameter)
    if guard.parameter.parameter_type is ParameterType.BOOLEAN:
        holds = var
    else:
        holds = var > z3.IntVal(guard.diff_minimum or 0)
    return holds if guard.negate else z3.Not(holds)


def transition_guard(transition: ApplicationTransition) -> z3.BoolRef:
    """Conjunction of all guards on *transition* (``True`` if none)."""
    formulas = [guard_formula(g) for g in transition.guards]
    if not formulas:
        return z3.BoolVal(True)
    if len(formulas) == 1:
        return formulas[0]
    return z3.And(*formulas)


def action_update(action: Action, transition: ApplicationTransition) -> z3.ExprRef:
    """Return the post-value expression  p'  of *action* on *transition*."""
    parameter = action.parameter
    var = parameter_variable(parameter)
    if parameter.parameter_type is ParameterType.BOOLEAN:
        return z3.BoolVal(True)

    entered = transition.target_service
    if entered == parameter.source_name:
        return var + 1
    if entered == parameter.target_name:
        return var - 1
    return var


def update_rule(transition: ApplicationTransition) -> dict[str, z3.ExprRef]:
    """Map parameter name → update expression for *transition*."""
    return {a.parameter.name: action_update(a, transition) for a in transition.actions}


# ═══════════════════════════════════════════════════════════════════════════
# 2.  Satisfiability
# ═══════════════════════════════════════════════════════════════════════════

def unsatisfiable_transitions(efsm: SessionLayerEFSM) -> list[ApplicationTransition]:
    """Return the transitions whose guards can never be satisfied together."""
    dead: list[ApplicationTransition] = []
    for t in efsm.transitions():
        if len(t.guards) < 2:
            continue
        solver = z3.Solver()
        solver.set("timeout", 3000)
        solver.add(transition_guard(t))
        if solver.check() == z3.unsat:
            dead.append(t)
    return dead


# ═══════════════════════════════════════════════════════════════════════════
# 3.  Evaluation & session replay
# ═══════════════════════════════════════════════════════════════════════════

def initial_valuation(efsm: SessionLayerEFSM) -> Valuation:
    """Start values of all parameters: ``False`` / ``0``."""
    return {
        name: False if p.parameter_type is ParameterType.BOOLEAN else 0
        for name, p in efsm.guard_action_parameters.items()
    }


def evaluate(expr: z3.ExprRef, efsm: SessionLayerEFSM, valuation: Valuation) -> Value:
    """Evaluate *expr* under *valuation* by substitution."""
    substitutions = []
    for name, value in valuation.items():
        parameter = efsm.guard_action_parameters[name]
        if parameter.parameter_type is ParameterType.BOOLEAN:
            substitutions.append((z3.Bool(name), z3.BoolVal(bool(value))))
        else:
            substitutions.append((z3.Int(name), z3.IntVal(int(value))))

    result = z3.simplify(z3.substitute(expr, *substitutions) if substitutions else expr)
    if z3.is_true(result):
        return True
    if z3.is_false(result):
        return False
    if z3.is_int_value(result):
        return result.as_long()
    raise ValueError(f"Expression {expr} is not closed under the valuation")


def fire(
    transition: ApplicationTransition,
    efsm: SessionLayerEFSM,
    valuation: Valuation,
) -> Optional[Valuation]:
    """Fire *transition* from *valuation*.

    Returns the post-valuation, or ``None`` if the guard does not hold.
    All updates read the pre-valuation.
    """
    if not evaluate(transition_guard(transition), efsm, valuation):
        return None
    post = dict(valuation)
    for name, expr in update_rule(transition).items():
        post[name] = evaluate(expr, efsm, valuation)
    return post


def verify_sessions(efsm: SessionLayerEFSM, repository: TraceRepository) -> list[str]:
    """Replay every recorded session through *efsm*.

    A session is **replayable** if its first service has an
    application state and every following service is reached by a
    transition whose guard holds at that point.

    Returns
    -------
    list[str]
        Ids of the sessions that could not be replayed.
    """
    failed: list[str] = []
    for session in repository.sessions:
        reason = _replay_session(efsm, session)
        if reason is not None:
            logger.debug("         session %s not replayable: %s", session.session_id, reason)
            failed.append(session.session_id)
    return failed


def _replay_session(efsm: SessionLayerEFSM, session: Session) -> Optional[str]:
    names = session.service_names()
    if not names:
        return None

    state = efsm.state_for_service(names[0])
    if state is None:
        return f"unknown service '{names[0]}'"

    valuation = initial_valuation(efsm)
    for name in names[1:]:
        transition = next(
            (t for t in state.outgoing_transitions if t.target_service == name),
            None,
        )
        if transition is None:
            return f"no transition {state.service.name} → {name}"

        post = fire(transition, efsm, valuation)
        if post is None:
            return f"guard of {state.service.name} → {name} violated"

        valuation = post
        state = transition.target  # type: ignore[assignment]
    return None
