"""Guarded workload EFSM generation from recorded sessions."""
from workload_efsm.models import GeneratorError, InvariantKind, ParameterType
from workload_efsm.pipeline import PipelineSettings, run_pipeline

__all__ = [
    "GeneratorError",
    "InvariantKind",
    "ParameterType",
    "PipelineSettings",
    "run_pipeline",
]
