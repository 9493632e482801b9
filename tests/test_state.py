import unittest

from snapshot_builder.builder import Builder
from snapshot_builder.config import ImageFilter
from snapshot_builder.errors import MissingStateError
from snapshot_builder.models import Keypair, ServerRecord, ServerStatus
from snapshot_builder.state import BuildState, check_step_order
from snapshot_builder.steps import Step, StepOutcome

from tests.fakes import FakeCloudClient, make_config


class _ReadsServer(Step):
    name = "reads_server"
    reads = ("server",)

    def run(self, state):
        return StepOutcome.CONTINUE


class BuildStateTests(unittest.TestCase):
    def test_get_unset_field_raises_missing_state(self) -> None:
        state = BuildState()
        with self.assertRaises(MissingStateError) as ctx:
            state.get("server")
        self.assertEqual(ctx.exception.key, "server")
        self.assertIsNone(state.get_optional("server"))

    def test_set_checks_field_type(self) -> None:
        state = BuildState()
        with self.assertRaises(TypeError):
            state.set("server", "not-a-server")
        with self.assertRaises(KeyError):
            state.set("flavour", "x")

    def test_set_and_discard(self) -> None:
        state = BuildState()
        server = ServerRecord(id=1, name="builder", status=ServerStatus.RUNNING)
        state.set("server", server)
        self.assertIs(state.get("server"), server)
        state.discard("server")
        self.assertIsNone(state.server)

    def test_payload_never_contains_private_key(self) -> None:
        state = BuildState()
        state.set("keypair", Keypair(id=3, name="k", private_key="PRIVATE", generated=True))
        payload = state.to_payload()
        self.assertNotIn("PRIVATE", str(payload))
        self.assertEqual(payload["keypair"]["id"], 3)


class StepOrderTests(unittest.TestCase):
    def _steps(self, **overrides):
        builder = Builder(
            make_config(**overrides),
            FakeCloudClient(),
            provisioner=lambda info: None,
            probe=None,
        )
        return builder.build_steps()

    def test_default_pipeline_is_well_ordered(self) -> None:
        self.assertEqual(check_step_order(self._steps()), [])

    def test_full_pipeline_is_well_ordered(self) -> None:
        steps = self._steps(
            image=None,
            image_filter=ImageFilter(with_selector=["role=base"], most_recent=True),
            upgrade_server_type="cx41",
            rescue="linux64",
        )
        self.assertEqual(
            [step.name for step in steps],
            [
                "create_ssh_key",
                "resolve_image",
                "create_server",
                "wait_for_server",
                "upgrade_server_type",
                "enable_rescue",
                "wait_for_connectivity",
                "provision",
                "shutdown_server",
                "downgrade_server_type",
                "create_snapshot",
            ],
        )
        self.assertEqual(check_step_order(steps), [])

    def test_reports_read_before_write(self) -> None:
        self.assertEqual(check_step_order([_ReadsServer()]), [("reads_server", "server")])


if __name__ == "__main__":
    unittest.main()
