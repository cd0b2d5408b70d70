"""
Pipeline Orchestrator — chains the generation steps.

    0. Input validation
    1. Request Template Synthesis  (protocol layer per application state)
    2. Model Consistency Pruning   (against the behavior models)
    3. Invariant Acquisition       (external miner, failure-tolerant)
    4. Guard & Action Synthesis
    5. Verification                (guard satisfiability, session replay)

The steps run strictly in this order: translation reads the pruned
topology to decide which transitions receive guards and actions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Sequence

from workload_efsm.guard_semantics import unsatisfiable_transitions, verify_sessions
from workload_efsm.guards_actions import install_guards_and_actions
from workload_efsm.invariants import InvariantMiner, acquire_invariants
from workload_efsm.models import BehaviorModel, GeneratorError, SessionLayerEFSM
from workload_efsm.preprocessing import TraceRepository
from workload_efsm.pruning import remove_unused_application_transitions
from workload_efsm.request_synthesis import install_protocol_layers

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PipelineSettings:
    """Options of a generation run.

    Attributes:
        enable_never_followed:        Translate never-followed invariants
                                      (reachability-gated).  Off by default.
        strict_connection_attributes: Fail when invocations of one service
                                      disagree in their connection
                                      attributes instead of warning.
        verify:                       Run the satisfiability and
                                      session-replay checks after
                                      translation.
        miner_configuration:          Opaque options for the invariant miner.
    """

    enable_never_followed: bool = False
    strict_connection_attributes: bool = False
    verify: bool = True
    miner_configuration: dict[str, Any] = field(default_factory=dict)


class ModelStore(Protocol):
    """Sink accepting the finished session layer EFSM."""

    def store(self, efsm: SessionLayerEFSM) -> None:
        ...


def run_pipeline(
    repository: TraceRepository,
    efsm: SessionLayerEFSM,
    behavior_models: Sequence[BehaviorModel],
    *,
    miner: Optional[InvariantMiner] = None,
    settings: Optional[PipelineSettings] = None,
    store: Optional[ModelStore] = None,
) -> SessionLayerEFSM:
    """Execute the full generation pipeline on *efsm* (mutated in place).

    Parameters
    ----------
    repository : TraceRepository
        The recorded sessions.
    efsm : SessionLayerEFSM
        The navigational state machine built from the flow topology.
    behavior_models : Sequence[BehaviorModel]
        One Markov chain per user class.
    miner : InvariantMiner | None
        Invariant miner; ``None`` skips guard/action synthesis.
    settings : PipelineSettings | None
        Run options.  Uses defaults when ``None``.
    store : ModelStore | None
        Receives the finished EFSM.

    Returns
    -------
    SessionLayerEFSM
        The guarded, pruned EFSM.

    Raises
    ------
    GeneratorError
        If the navigational machine or the behavior models are missing
        or malformed.
    """
    settings = settings or PipelineSettings()

    # ── Step 0: Validation ──────────────────────────────────────────────
    _validate_inputs(efsm, behavior_models)

    # ── Step 1: Request templates ───────────────────────────────────────
    logger.info("Step 1  ▸  Synthesising request templates")
    templates = install_protocol_layers(
        efsm, repository, strict=settings.strict_connection_attributes,
    )
    logger.info(
        "         Templates = %d  |  Services without traffic = %d",
        len(templates),
        sum(1 for t in templates.values() if t.is_empty()),
    )

    # ── Step 2: Pruning ─────────────────────────────────────────────────
    logger.info("Step 2  ▸  Pruning against %d behavior model(s)", len(behavior_models))
    before = _transition_count(efsm)
    removed = remove_unused_application_transitions(efsm, behavior_models)
    logger.info(
        "         Transitions = %d → %d  (%d removed)",
        before,
        _transition_count(efsm),
        len(removed),
    )

    # ── Step 3: Invariants ──────────────────────────────────────────────
    logger.info("Step 3  ▸  Acquiring temporal invariants")
    invariants = acquire_invariants(miner, repository, settings.miner_configuration)
    logger.info("         Invariants = %d", len(invariants))

    # ── Step 4: Guards & actions ────────────────────────────────────────
    logger.info("Step 4  ▸  Installing guards and actions")
    report = install_guards_and_actions(
        efsm, invariants, enable_never_followed=settings.enable_never_followed,
    )
    logger.info(
        "         Installed = %d/%d  |  Parameters = %d  |  Guards = %d  |  Actions = %d",
        report.installed,
        report.invariants,
        len(efsm.guard_action_parameters),
        report.guards_added,
        report.actions_added,
    )

    # ── Step 5: Verification ────────────────────────────────────────────
    if settings.verify:
        logger.info("Step 5  ▸  Verifying guarded EFSM")
        _verify(efsm, repository)
    else:
        logger.info("Step 5  ▸  Verification skipped")

    if store is not None:
        store.store(efsm)

    return efsm


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _validate_inputs(
    efsm: Optional[SessionLayerEFSM],
    behavior_models: Optional[Sequence[BehaviorModel]],
) -> None:
    if efsm is None or not efsm.application_states:
        raise GeneratorError("Session layer EFSM is missing or has no application states")
    if efsm.initial_state is None:
        raise GeneratorError("Session layer EFSM has no initial state")
    if not behavior_models:
        raise GeneratorError("No behavior models available")
    for model in behavior_models:
        if not model.markov_states:
            raise GeneratorError(f"Behavior model '{model.name}' has no Markov states")


def _transition_count(efsm: SessionLayerEFSM) -> int:
    return sum(1 for _ in efsm.transitions())


def _verify(efsm: SessionLayerEFSM, repository: TraceRepository) -> None:
    for t in unsatisfiable_transitions(efsm):
        logger.warning("✗  Guards of %r can never hold together", t)

    failed = verify_sessions(efsm, repository)
    if failed:
        logger.warning(
            "✗  %d of %d recorded sessions cannot be replayed: %s",
            len(failed),
            len(repository),
            ", ".join(failed[:10]),
        )
    else:
        logger.info("✓  Session replay verification PASSED")
