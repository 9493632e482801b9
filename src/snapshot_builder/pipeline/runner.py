"""Pipeline runner: ordered execution with reverse-order cleanup."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from ..errors import BuildCancelledError, CleanupFailure, PollTimeoutError
from ..state import BuildState
from ..steps.base import Step, StepOutcome

logger = logging.getLogger(__name__)

# observer(event, step_name, error)
StepObserver = Callable[[str, str, Optional[BaseException]], None]


@dataclass
class RunResult:
    """Outcome of one pipeline run."""

    completed: bool = False
    executed: List[str] = field(default_factory=list)
    halted_step: Optional[str] = None
    error: Optional[BaseException] = None
    cancelled: bool = False
    cleanup_errors: List[CleanupFailure] = field(default_factory=list)

    @property
    def halted(self) -> bool:
        return not self.completed


class PipelineRunner:
    """
    流水线执行器

    Runs steps strictly one after another. When a step halts or raises,
    nothing after it runs; then every step that started, including the one
    that stopped the pipeline, is cleaned up in reverse order. A failing
    cleanup is recorded and the unwind carries on.
    """

    def __init__(
        self,
        steps: Sequence[Step],
        *,
        cancel: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        debug_hook: Optional[Callable[[str], bool]] = None,
        observer: Optional[StepObserver] = None,
    ) -> None:
        self.steps = list(steps)
        self.cancel = cancel or threading.Event()
        self.clock = clock
        self.debug_hook = debug_hook
        self.observer = observer

    def run(self, state: BuildState) -> RunResult:
        result = RunResult()
        executed: List[Step] = []
        started = self.clock()

        for index, step in enumerate(self.steps, 1):
            stop = self._check_before(step, state, started)
            if stop is not None:
                result.error = stop
                result.cancelled = isinstance(stop, BuildCancelledError)
                break

            if self.debug_hook is not None and not self.debug_hook(step.name):
                logger.info("⏸️  Halting before %s (debug)", step.name)
                result.halted_step = step.name
                break

            logger.info("📍 Step %d/%d: %s", index, len(self.steps), step.name)
            executed.append(step)
            result.executed.append(step.name)
            self._notify("start", step.name)
            try:
                outcome = step.run(state)
            except (BuildCancelledError, KeyboardInterrupt) as exc:
                error = exc if isinstance(exc, BuildCancelledError) else BuildCancelledError()
                logger.warning("   ⛔ Cancelled during %s", step.name)
                result.error = error
                result.cancelled = True
                result.halted_step = step.name
                self._notify("cancelled", step.name, error)
                break
            except Exception as exc:
                logger.error("   ❌ %s failed: %s", step.name, exc)
                result.error = exc
                result.halted_step = step.name
                self._notify("failed", step.name, exc)
                break

            if outcome is StepOutcome.HALT:
                logger.info("   ⏹️  %s halted the build", step.name)
                result.halted_step = step.name
                self._notify("halted", step.name)
                break
            self._notify("done", step.name)
        else:
            result.completed = True

        result.cleanup_errors = self._unwind(executed, state)
        return result

    def _check_before(self, step: Step, state: BuildState, started: float) -> Optional[BaseException]:
        if self.cancel.is_set():
            logger.warning("⛔ Build cancelled before %s", step.name)
            return BuildCancelledError(f"build cancelled before {step.name}")
        deadline = state.get_optional("deadline")
        if deadline is not None:
            now = self.clock()
            if now >= deadline:
                logger.error("⏱️  Build timeout reached before %s", step.name)
                return PollTimeoutError("the build to finish", now - started)
        return None

    def _unwind(self, executed: List[Step], state: BuildState) -> List[CleanupFailure]:
        failures: List[CleanupFailure] = []
        for step in reversed(executed):
            try:
                step.cleanup(state)
            except (Exception, KeyboardInterrupt) as exc:
                # 清理失败（包括再次 Ctrl-C）只记录，继续清理更早的步骤
                logger.error("   ⚠️ Cleanup of %s failed: %s", step.name, exc)
                failures.append(CleanupFailure(step.name, exc))
                self._notify("cleanup_failed", step.name, exc)
                continue
            self._notify("cleaned", step.name)
        return failures

    def _notify(self, event: str, step_name: str, error: Optional[BaseException] = None) -> None:
        if self.observer is not None:
            self.observer(event, step_name, error)
