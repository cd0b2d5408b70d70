"""
CLI entry point for the workload EFSM generator.

Usage::

    python -m workload_efsm <sessions.csv|json> <workload.json> \
        [--invariants invariants.json | --mine] [--graph out/efsm]
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from workload_efsm.invariants import (
    DeclareInvariantMiner,
    InvariantMiner,
    StaticInvariantMiner,
    load_invariants,
)
from workload_efsm.models import GeneratorError, SessionLayerEFSM
from workload_efsm.pipeline import PipelineSettings, run_pipeline
from workload_efsm.preprocessing import load_session_log, load_workload


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="workload-efsm",
        description="Generate a guarded session layer EFSM from recorded sessions.",
    )
    parser.add_argument(
        "session_log",
        type=Path,
        help="Path to the session log (.csv or .json).",
    )
    parser.add_argument(
        "workload",
        type=Path,
        help="Path to the workload bundle (navigational EFSM + behavior models, .json).",
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "-i",
        "--invariants",
        type=Path,
        default=None,
        help="JSON file with externally mined invariants.",
    )
    source.add_argument(
        "--mine",
        action="store_true",
        help="Mine invariants from the session log with pm4py (Declare).",
    )
    parser.add_argument(
        "--enable-never-followed",
        action="store_true",
        help="Translate never-followed invariants into guards and actions.",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail if invocations of a service disagree in connection attributes.",
    )
    parser.add_argument(
        "--no-verify",
        action="store_true",
        help="Skip guard satisfiability and session replay checks.",
    )
    parser.add_argument(
        "-g",
        "--graph",
        type=Path,
        default=None,
        help="Render the resulting EFSM with Graphviz to this path.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug-level logging.",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)-8s %(message)s",
    )

    for path in (args.session_log, args.workload, args.invariants):
        if path is not None and not path.exists():
            logging.error("File not found: %s", path)
            sys.exit(1)

    miner: InvariantMiner | None = None
    if args.invariants:
        miner = StaticInvariantMiner(load_invariants(args.invariants))
    elif args.mine:
        miner = DeclareInvariantMiner()

    settings = PipelineSettings(
        enable_never_followed=args.enable_never_followed,
        strict_connection_attributes=args.strict,
        verify=not args.no_verify,
    )

    repository = load_session_log(args.session_log)
    efsm, behavior_models = load_workload(args.workload)

    try:
        efsm = run_pipeline(
            repository, efsm, behavior_models, miner=miner, settings=settings,
        )
    except GeneratorError as exc:
        logging.error("Generation failed: %s", exc)
        sys.exit(1)

    print(format_summary(efsm))

    if args.graph:
        from workload_efsm.visualization import EFSMVisualizer

        rendered = EFSMVisualizer().save_efsm(efsm, args.graph, title=args.workload.stem)
        logging.info("Graph written to %s", rendered)


def format_summary(efsm: SessionLayerEFSM) -> str:
    """Return a human-readable listing of states, transitions and annotations."""
    lines: list[str] = []
    for state in efsm.application_states:
        marker = " (initial)" if state is efsm.initial_state else ""
        lines.append(f"{state.service.name}{marker}")
        for t in state.outgoing_transitions:
            target = t.target_service or "<exit>"
            guards = ", ".join(
                ("" if g.negate else "!")
                + g.parameter.name
                + (f" > {g.diff_minimum}" if g.diff_minimum is not None else "")
                for g in t.guards
            )
            actions = ", ".join(a.parameter.name for a in t.actions)
            lines.append(
                f"  → {target:20s}"
                + (f"  guard = [{guards}]" if guards else "")
                + (f"  action = [{actions}]" if actions else "")
            )

    if efsm.guard_action_parameters:
        lines.append("")
        lines.append("Guard/action parameters:")
        for p in efsm.guard_action_parameters.values():
            lines.append(f"  {p.name:20s}  {p.parameter_type.name.lower()}")
    return "\n".join(lines)


if __name__ == "__main__":
    main()
