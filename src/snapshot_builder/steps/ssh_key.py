"""Register the SSH key the build logs in with."""

from __future__ import annotations

import logging
from typing import Callable, List, Union

from ..cloud.client import CloudClient
from ..config import BuilderConfig
from ..models import Keypair
from ..ssh.keys import GeneratedKey, generate_keypair, public_key_for
from ..state import BuildState
from .base import Step, StepOutcome

logger = logging.getLogger(__name__)


class CreateSSHKey(Step):
    """Register the key the build logs in with.

    An existing provider key (``communicator.ssh_key_id``) is used as is.
    A configured private key without an id has its public half uploaded;
    otherwise a temporary keypair is generated and uploaded. Only provider
    key records created here are deleted during cleanup; operator keys
    (``communicator.ssh_key_id`` and the ``ssh_keys`` list) are left alone.
    """

    name = "create_ssh_key"
    writes = ("keypair", "ssh_key_ids")

    def __init__(
        self,
        client: CloudClient,
        config: BuilderConfig,
        key_generator: Callable[..., GeneratedKey] = generate_keypair,
    ) -> None:
        self.client = client
        self.config = config
        self.key_generator = key_generator

    def run(self, state: BuildState) -> StepOutcome:
        comm = self.config.communicator
        key_ids: List[Union[int, str]] = []

        if comm.ssh_key_id is not None:
            logger.info("🔑 Using existing SSH key %s", comm.ssh_key_id)
            keypair = Keypair(
                id=comm.ssh_key_id,
                name=str(comm.ssh_key_id),
                private_key=comm.ssh_private_key,
                generated=False,
            )
        else:
            comment = self.config.server_name or ""
            if comm.ssh_private_key:
                # 用户提供了私钥：只上传其公钥，私钥原样使用
                logger.info("🔑 Uploading public key of the configured private key...")
                public_key = public_key_for(comm.ssh_private_key, comment=comment)
                private_key = comm.ssh_private_key
            else:
                logger.info("🔑 Generating temporary SSH key...")
                generated = self.key_generator(comment=comment)
                public_key = generated.public_key
                private_key = generated.private_key
            keypair = self.client.create_ssh_key(
                self.config.server_name or "snapshot-builder",
                public_key,
                labels=self.config.ssh_keys_labels,
            )
            keypair.private_key = private_key
            # 云端的密钥记录由本次构建创建，清理时删除
            keypair.generated = True
            logger.info("   Created SSH key %s (%s)", keypair.name, keypair.id)

        key_ids.append(keypair.id)
        # 用户额外指定的已有密钥（id 或名称），只挂载不删除
        for extra in self.config.ssh_keys:
            if extra not in key_ids:
                key_ids.append(extra)

        state.set("keypair", keypair)
        state.set("ssh_key_ids", key_ids)
        return StepOutcome.CONTINUE

    def cleanup(self, state: BuildState) -> None:
        keypair = state.get_optional("keypair")
        if keypair is None or not keypair.generated:
            return
        logger.info("🧹 Deleting temporary SSH key %s", keypair.id)
        self.client.delete_ssh_key(keypair.id)
        # 私钥不再保留
        keypair.private_key = None
        keypair.generated = False
