"""
Step 2 — Model Consistency Pruning.

The navigational state machine is derived from flow descriptions and
therefore admits every structurally possible transition.  Behavior
models are extracted from the recorded sessions and therefore only
contain transitions that were actually observed.

A navigational transition  (s → t)  survives iff at least one
behavior model contains a Markov transition from a state of service
s to a state of service t.  Transitions into the exit state are
never removed.
"""

from __future__ import annotations

import logging
from typing import Sequence

from workload_efsm.models import (
    ApplicationState,
    ApplicationTransition,
    BehaviorModel,
    Service,
    SessionLayerEFSM,
)

logger = logging.getLogger(__name__)


def remove_unused_application_transitions(
    efsm: SessionLayerEFSM,
    behavior_models: Sequence[BehaviorModel],
) -> list[ApplicationTransition]:
    """Remove transitions of *efsm* not evidenced by any behavior model.

    Each source state is scanned completely before its unsupported
    transitions are removed in one batch.

    Returns
    -------
    list[ApplicationTransition]
        The removed transitions, in scan order.
    """
    observed: set[tuple[Service, Service]] = set()
    for model in behavior_models:
        observed |= model.service_pairs()

    removed: list[ApplicationTransition] = []
    for state in efsm.application_states:
        remove_list = [
            t for t in state.outgoing_transitions
            if isinstance(t.target, ApplicationState)
            and (state.service, t.target.service) not in observed
        ]
        if not remove_list:
            continue

        state.outgoing_transitions = [
            t for t in state.outgoing_transitions
            if not any(t is r for r in remove_list)
        ]
        for t in remove_list:
            logger.debug(
                "         pruned %s → %s (no behavior model evidence)",
                state.service.name,
                t.target_service,
            )
        removed.extend(remove_list)

    return removed
