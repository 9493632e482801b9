"""Build orchestrator: assembles the step pipeline and extracts the artifact."""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .cloud.client import CloudClient
from .config import BuilderConfig
from .errors import BuildError
from .models import Artifact
from .paths import LOGS_DIR
from .pipeline.runner import PipelineRunner, RunResult
from .polling import ActionPoller
from .ssh.keys import GeneratedKey, generate_keypair
from .ssh.probe import ConnectivityProbe, probe_for
from .state import BuildState
from .steps import (
    CreateServer,
    CreateSnapshot,
    CreateSSHKey,
    DowngradeServerType,
    EnableRescue,
    Provision,
    Provisioner,
    ResolveImage,
    ShutdownServer,
    Step,
    UpgradeServerType,
    WaitForConnectivity,
    WaitForServer,
)
from .utils.logging import RedactingFilter

logger = logging.getLogger(__name__)

_DEFAULT_PROBE: Any = object()


class Builder:
    """
    构建编排器

    Builds the step list once from the configuration, runs it and turns
    the final state into an Artifact, or raises BuildError naming the
    step that stopped the build.
    """

    def __init__(
        self,
        config: BuilderConfig,
        client: Optional[CloudClient] = None,
        *,
        provisioner: Optional[Provisioner] = None,
        probe: Optional[ConnectivityProbe] = _DEFAULT_PROBE,
        cancel: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], None]] = None,
        key_generator: Callable[..., GeneratedKey] = generate_keypair,
        debug_hook: Optional[Callable[[str], bool]] = None,
        log_dir: Optional[str] = None,
    ) -> None:
        self.config = config
        if client is None:
            from .cloud.hcloud import HCloudClient

            client = HCloudClient(config.token or "", config.endpoint)
        self.client = client
        self.provisioner = provisioner
        self.probe = probe_for(config.communicator.type) if probe is _DEFAULT_PROBE else probe
        self.cancel = cancel or threading.Event()
        self.clock = clock
        self.key_generator = key_generator
        self.debug_hook = debug_hook
        self.redaction = RedactingFilter(config.secrets())
        self.poller = ActionPoller(
            client,
            config.poll_interval,
            action_timeout=config.action_timeout,
            cancel=self.cancel,
            clock=clock,
            sleep=sleep,
        )

        self.log_dir = Path(log_dir) if log_dir else LOGS_DIR
        self.build_log: Dict[str, Any] = {}
        self.current_log_file: Optional[Path] = None
        self.state: Optional[BuildState] = None

    def build_steps(self) -> List[Step]:
        """The ordered pipeline for this configuration."""
        config = self.config
        steps: List[Step] = [
            CreateSSHKey(self.client, config, key_generator=self.key_generator),
            ResolveImage(self.client, config),
            CreateServer(self.client, config),
            WaitForServer(self.client, self.poller),
        ]
        if config.upgrade_server_type:
            steps.append(UpgradeServerType(self.client, self.poller, config))
        if config.rescue:
            steps.append(EnableRescue(self.client, self.poller, config))
        steps.append(WaitForConnectivity(config, self.poller, self.probe))
        if self.provisioner is not None:
            steps.append(Provision(self.provisioner))
        # 只保留运行中的服务器时不需要关机
        if not (config.skip_snapshot and config.keep_server):
            steps.append(ShutdownServer(self.client, self.poller))
            if config.upgrade_server_type:
                steps.append(DowngradeServerType(self.client, self.poller, config))
        if not config.skip_snapshot:
            steps.append(CreateSnapshot(self.client, self.poller, config))
        return steps

    def run(self) -> Artifact:
        state = BuildState()
        if self.config.build_timeout:
            state.set("deadline", float(self.clock() + self.config.build_timeout))
        self.state = state

        steps = self.build_steps()
        self._init_log(steps)

        logger.info("")
        logger.info("=" * 60)
        logger.info("🚀 SNAPSHOT BUILD: %s", self.config.server_name)
        logger.info("=" * 60)
        for i, step in enumerate(steps, 1):
            logger.info("  %d. %s", i, step.name)
        logger.info("")

        runner = PipelineRunner(
            steps,
            cancel=self.cancel,
            clock=self.clock,
            debug_hook=self.debug_hook,
            observer=self._record_event,
        )
        result = runner.run(state)
        return self._finish(result, state)

    def _finish(self, result: RunResult, state: BuildState) -> Artifact:
        for failure in result.cleanup_errors:
            logger.error("⚠️ Cleanup error in %s: %s", failure.step, failure.error)

        if not result.completed:
            error = BuildError(result.halted_step, result.error, result.cleanup_errors)
            status = "cancelled" if result.cancelled else ("failed" if result.error else "halted")
            self._finalize_log(status, state, error=error)
            logger.error("💥 Build %s: %s", status, self.redaction.redact(str(error)))
            raise error

        snapshot = state.get_optional("snapshot")
        artifact = Artifact(
            image_id=snapshot.id if snapshot else None,
            image_name=(snapshot.description or self.config.snapshot_name) if snapshot else None,
            server=state.get_optional("server") if self.config.keep_server else None,
        )
        self._finalize_log("success", state, artifact=artifact, cleanup_errors=result.cleanup_errors)
        if artifact.image_id is not None:
            logger.info("🎉 Snapshot %s (%s) is ready", artifact.image_id, artifact.image_name)
        else:
            logger.info("🎉 Build finished, no snapshot created")
        return artifact

    # ------------------------------------------------------------ build log

    def _init_log(self, steps: List[Step]) -> None:
        """初始化日志文件"""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"build_{self.config.server_name}_{timestamp}.json"
        self.current_log_file = self.log_dir / filename

        self.build_log = {
            "version": "1.0",
            "server_name": self.config.server_name,
            "start_time": datetime.now().isoformat(),
            "end_time": None,
            "status": "running",
            "config": self.config.to_payload(),
            "pipeline": [step.name for step in steps],
            "steps": [],
            "cleanup": [],
            "state": None,
            "artifact": None,
            "error": None,
        }
        self._save_log()
        logger.info("📝 Logging to: %s", self.current_log_file)

    def _record_event(self, event: str, step_name: str, error: Optional[BaseException]) -> None:
        message = self.redaction.redact(str(error) or type(error).__name__) if error is not None else None
        now = datetime.now().isoformat()

        if event in ("cleaned", "cleanup_failed"):
            self.build_log["cleanup"].append({
                "step": step_name,
                "status": "ok" if event == "cleaned" else "failed",
                "error": message,
                "timestamp": now,
            })
        elif event == "start":
            self.build_log["steps"].append({
                "step": step_name,
                "status": "running",
                "started": now,
                "finished": None,
                "error": None,
            })
        else:
            step_log = self.build_log["steps"][-1]
            step_log["status"] = event
            step_log["finished"] = now
            if message:
                step_log["error"] = message
                if error is not None:
                    step_log["error_type"] = type(error).__name__
        self._save_log()

    def _finalize_log(
        self,
        status: str,
        state: BuildState,
        *,
        artifact: Optional[Artifact] = None,
        error: Optional[BuildError] = None,
        cleanup_errors: Optional[list] = None,
    ) -> None:
        """完成日志记录"""
        self.build_log["end_time"] = datetime.now().isoformat()
        self.build_log["status"] = status
        self.build_log["state"] = state.to_payload()
        if artifact is not None:
            self.build_log["artifact"] = artifact.to_dict()
        if error is not None:
            self.build_log["error"] = {
                "step": error.step,
                "type": type(error.cause).__name__ if error.cause else None,
                "message": self.redaction.redact(str(error.cause)) if error.cause else None,
            }
        if cleanup_errors:
            self.build_log["cleanup_errors"] = [
                self.redaction.redact(str(failure)) for failure in cleanup_errors
            ]
        self.build_log["summary"] = {
            "total_steps": len(self.build_log["pipeline"]),
            "executed_steps": len(self.build_log["steps"]),
            "duration_seconds": self._calculate_duration(),
        }
        self._save_log()
        logger.info("📄 Log saved to: %s", self.current_log_file)

    def _calculate_duration(self) -> float:
        """计算执行时长"""
        try:
            start = datetime.fromisoformat(self.build_log["start_time"])
            end = datetime.fromisoformat(self.build_log["end_time"])
            return (end - start).total_seconds()
        except (KeyError, TypeError, ValueError):
            return 0.0

    def _save_log(self) -> None:
        """保存日志到文件"""
        if self.current_log_file:
            with open(self.current_log_file, "w", encoding="utf-8") as f:
                json.dump(self.build_log, f, indent=2, ensure_ascii=False)
