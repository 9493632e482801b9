"""Step pipeline execution."""

from .runner import PipelineRunner, RunResult, StepObserver

__all__ = ["PipelineRunner", "RunResult", "StepObserver"]
