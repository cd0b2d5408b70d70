"""
Root entry point for the workload EFSM generator.

Runs the bundled shop example (sessions, navigational EFSM, behavior
models, invariants) through the full pipeline, prints the resulting
guarded EFSM and saves a rendering to output/<case>/.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from workload_efsm.__main__ import format_summary
from workload_efsm.invariants import StaticInvariantMiner, load_invariants
from workload_efsm.pipeline import PipelineSettings, run_pipeline
from workload_efsm.preprocessing import load_session_log, load_workload
from workload_efsm.visualization import EFSMVisualizer, VisualizerSettings

DATAPATH = Path(__file__).resolve().parent / "data"


@dataclass
class ExampleCase:
    name: str
    sessions: Path
    workload: Path
    invariants: Path


EXAMPLE_CASES: list[ExampleCase] = [
    ExampleCase(
        "shop",
        DATAPATH / "shop_sessions.json",
        DATAPATH / "shop_workload.json",
        DATAPATH / "shop_invariants.json",
    ),
]


logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)-8s %(message)s",
)
logger = logging.getLogger(__name__)


def run_example(case: ExampleCase, viz: EFSMVisualizer) -> None:
    """Run the full pipeline on one example and save its rendering."""
    logger.info("=" * 60)
    logger.info("  Running: %s  (%s)", case.name, case.sessions)
    logger.info("=" * 60)

    repository = load_session_log(case.sessions)
    efsm, behavior_models = load_workload(case.workload)
    miner = StaticInvariantMiner(load_invariants(case.invariants))

    efsm = run_pipeline(
        repository,
        efsm,
        behavior_models,
        miner=miner,
        settings=PipelineSettings(enable_never_followed=True),
    )

    sep = "=" * 70
    print(f"\n{sep}\n  {case.name.upper()} — Guarded EFSM\n{sep}")
    print(format_summary(efsm))
    print(sep)

    out_dir = Path(f"output/{case.name}")
    out_dir.mkdir(parents=True, exist_ok=True)
    viz.save_efsm(efsm, str(out_dir / "session_layer"), title=f"{case.name} — Session Layer EFSM")
    logger.info("  Output saved to %s/", out_dir)


if __name__ == "__main__":
    viz = EFSMVisualizer(VisualizerSettings(output_format="png", rankdir="LR"))

    for case in EXAMPLE_CASES:
        run_example(case, viz)
