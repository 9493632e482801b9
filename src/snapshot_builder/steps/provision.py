"""Run the external provisioning phase."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from ..errors import BuilderError, ProvisioningError
from ..models import ConnectionInfo
from ..state import BuildState
from .base import Step, StepOutcome

logger = logging.getLogger(__name__)

# 返回 False 表示有意停止构建（不算失败）
Provisioner = Callable[[ConnectionInfo], Optional[bool]]


class Provision(Step):
    name = "provision"
    reads = ("connection",)

    def __init__(self, provisioner: Provisioner) -> None:
        self.provisioner = provisioner

    def run(self, state: BuildState) -> StepOutcome:
        info = state.get("connection")
        logger.info("🛠️  Provisioning %s...", info.host)
        try:
            result = self.provisioner(info)
        except BuilderError:
            raise
        except Exception as exc:
            raise ProvisioningError(f"provisioning failed: {exc}") from exc
        if result is False:
            logger.info("   Provisioner asked to stop the build")
            return StepOutcome.HALT
        return StepOutcome.CONTINUE
