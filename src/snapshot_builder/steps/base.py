"""Step contract shared by every stage of the build pipeline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Tuple

from ..state import BuildState


class StepOutcome(Enum):
    """步骤执行后的走向"""
    CONTINUE = "continue"
    HALT = "halt"


class Step(ABC):
    """One unit of orchestration with a compensating cleanup.

    ``reads`` and ``writes`` name the BuildState fields the step consumes
    and produces, so the order of a pipeline can be checked up front.
    Failures are raised; ``run`` returns HALT only for a deliberate stop.
    """

    name: str = "step"
    reads: Tuple[str, ...] = ()
    writes: Tuple[str, ...] = ()

    @abstractmethod
    def run(self, state: BuildState) -> StepOutcome:
        pass

    def cleanup(self, state: BuildState) -> None:
        """Undo what ``run`` left behind. Must be a no-op if ``run`` never ran."""
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
