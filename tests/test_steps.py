import unittest

from snapshot_builder.config import CommunicatorConfig, ImageFilter
from snapshot_builder.errors import (
    ActionFailedError,
    AmbiguousImageError,
    ConnectivityTimeoutError,
    NoMatchingImageError,
    PollTimeoutError,
    ProvisioningError,
)
from snapshot_builder.models import ServerStatus
from snapshot_builder.polling import ActionPoller
from snapshot_builder.ssh.keys import generate_keypair
from snapshot_builder.state import BuildState
from snapshot_builder.steps import (
    CreateServer,
    CreateSnapshot,
    CreateSSHKey,
    DowngradeServerType,
    EnableRescue,
    Provision,
    ResolveImage,
    ShutdownServer,
    StepOutcome,
    UpgradeServerType,
    WaitForConnectivity,
    WaitForServer,
)

from tests.fakes import (
    FakeClock,
    FakeCloudClient,
    FakeProbe,
    fake_key_generator,
    image,
    make_config,
)


class StepTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.client = FakeCloudClient()
        self.config = make_config()
        self.state = BuildState()

    def poller(self, client=None):
        return ActionPoller(
            client or self.client,
            self.config.poll_interval,
            action_timeout=self.config.action_timeout,
            clock=self.clock,
            sleep=self.clock.sleep,
        )

    def boot_server(self, client=None):
        client = client or self.client
        self.state.set("image", "ubuntu-22.04")
        self.state.set("ssh_key_ids", [1])
        CreateServer(client, self.config).run(self.state)
        WaitForServer(client, self.poller(client)).run(self.state)
        return self.state.get("server")


class CreateSSHKeyTests(StepTestCase):
    def test_generated_key_is_uploaded_and_deleted(self) -> None:
        self.config.ssh_keys = ["ops-key", 9]
        step = CreateSSHKey(self.client, self.config, key_generator=fake_key_generator)
        self.assertIs(step.run(self.state), StepOutcome.CONTINUE)

        keypair = self.state.get("keypair")
        self.assertTrue(keypair.generated)
        self.assertEqual(keypair.private_key, "-----BEGIN FAKE KEY-----")
        self.assertEqual(self.state.get("ssh_key_ids"), [keypair.id, "ops-key", 9])

        step.cleanup(self.state)
        self.assertIn(("delete_ssh_key", (keypair.id,)), self.client.calls)
        self.assertIsNone(keypair.private_key)

    def test_operator_key_is_never_deleted(self) -> None:
        self.config.communicator = CommunicatorConfig(ssh_key_id=55, ssh_private_key="KEY")
        step = CreateSSHKey(self.client, self.config, key_generator=fake_key_generator)
        step.run(self.state)
        step.cleanup(self.state)
        self.assertEqual(self.state.get("ssh_key_ids"), [55])
        self.assertFalse(self.client.called("create_ssh_key"))
        self.assertFalse(self.client.called("delete_ssh_key"))

    def test_configured_private_key_is_used_for_login(self) -> None:
        operator_key = generate_keypair(bits=1024)
        self.config.communicator = CommunicatorConfig(ssh_private_key=operator_key.private_key)
        step = CreateSSHKey(self.client, self.config, key_generator=fake_key_generator)
        step.run(self.state)

        name, (_, public_key, _) = self.client.calls[0]
        self.assertEqual(name, "create_ssh_key")
        self.assertEqual(public_key, f"{operator_key.public_key} builder-test")
        keypair = self.state.get("keypair")
        self.assertEqual(keypair.private_key, operator_key.private_key)
        self.assertTrue(keypair.generated)

        step.cleanup(self.state)
        self.assertIn(("delete_ssh_key", (keypair.id,)), self.client.calls)

    def test_cleanup_without_run_is_noop(self) -> None:
        CreateSSHKey(self.client, self.config).cleanup(self.state)
        self.assertEqual(self.client.calls, [])


class ResolveImageTests(StepTestCase):
    def test_direct_image_skips_lookup(self) -> None:
        ResolveImage(self.client, self.config).run(self.state)
        self.assertEqual(self.state.get("image"), "ubuntu-22.04")
        self.assertFalse(self.client.called("list_images"))

    def test_most_recent_match_wins(self) -> None:
        self.client.images = [image(1, 3), image(2, 20), image(3, 7)]
        self.config.image = None
        self.config.image_filter = ImageFilter(with_selector=["role=base"], most_recent=True)
        ResolveImage(self.client, self.config).run(self.state)
        self.assertEqual(self.state.get("image"), "2")
        self.assertIn(("list_images", ("role=base",)), self.client.calls)

    def test_no_match_raises(self) -> None:
        self.config.image = None
        self.config.image_filter = ImageFilter(with_selector=["role=none"], most_recent=True)
        with self.assertRaises(NoMatchingImageError):
            ResolveImage(self.client, self.config).run(self.state)

    def test_several_matches_without_most_recent_is_ambiguous(self) -> None:
        self.client.images = [image(1, 3), image(2, 4)]
        self.config.image = None
        self.config.image_filter = ImageFilter(with_selector=["role=base"])
        with self.assertRaises(AmbiguousImageError) as ctx:
            ResolveImage(self.client, self.config).run(self.state)
        self.assertEqual(ctx.exception.count, 2)


class ServerStepTests(StepTestCase):
    def test_request_carries_network_options(self) -> None:
        self.config.networks = [10]
        self.config.firewalls = [20]
        self.config.public_ipv6_disabled = True
        self.config.server_labels = {"purpose": "build"}
        self.state.set("image", "ubuntu-22.04")
        self.state.set("ssh_key_ids", [1])
        payload = CreateServer(self.client, self.config).build_request(self.state).to_payload()
        self.assertEqual(payload["firewalls"], [{"firewall": 20}])
        self.assertEqual(payload["networks"], [10])
        self.assertEqual(payload["public_net"], {"enable_ipv4": True, "enable_ipv6": False})
        self.assertEqual(payload["labels"], {"purpose": "build"})
        self.assertTrue(payload["start_after_create"])

    def test_boot_waits_for_running_and_cleanup_deletes(self) -> None:
        server = self.boot_server()
        self.assertIs(server.status, ServerStatus.RUNNING)
        self.assertEqual(server.address, "203.0.113.10")
        self.assertIsNotNone(self.state.get("boot_deadline"))

        CreateServer(self.client, self.config).cleanup(self.state)
        self.assertIn(("delete_server", (server.id,)), self.client.calls)
        # 已删除的服务器不会被重复删除
        CreateServer(self.client, self.config).cleanup(self.state)
        self.assertEqual(self.client.call_names().count("delete_server"), 1)

    def test_keep_server_skips_delete(self) -> None:
        self.boot_server()
        self.config.keep_server = True
        CreateServer(self.client, self.config).cleanup(self.state)
        self.assertFalse(self.client.called("delete_server"))

    def test_failed_create_action_leaves_nothing_to_delete(self) -> None:
        client = FakeCloudClient(action_script={"create_server": [("error", "server limit reached")]})
        with self.assertRaises(ActionFailedError):
            self.boot_server(client)
        self.assertIsNone(self.state.get_optional("server"))
        CreateServer(client, self.config).cleanup(self.state)
        self.assertFalse(client.called("delete_server"))


class PowerStepTests(StepTestCase):
    def test_shutdown_stops_gracefully(self) -> None:
        self.boot_server()
        ShutdownServer(self.client, self.poller()).run(self.state)
        self.assertIs(self.state.get("server").status, ServerStatus.STOPPED)
        self.assertFalse(self.client.called("power_off"))

    def test_shutdown_falls_back_to_power_off(self) -> None:
        self.config.action_timeout = 600.0
        client = FakeCloudClient(ignore_shutdown=True)
        self.boot_server(client)
        ShutdownServer(client, self.poller(client)).run(self.state)
        self.assertTrue(client.called("power_off"))
        self.assertIs(self.state.get("server").status, ServerStatus.STOPPED)

    def test_upgrade_then_downgrade_keeps_disk(self) -> None:
        self.config.upgrade_server_type = "cx41"
        server = self.boot_server()
        poller = self.poller()
        UpgradeServerType(self.client, poller, self.config).run(self.state)
        self.assertIn(("change_type", (server.id, "cx41", False)), self.client.calls)
        self.assertIs(self.state.get("server").status, ServerStatus.RUNNING)

        ShutdownServer(self.client, poller).run(self.state)
        DowngradeServerType(self.client, poller, self.config).run(self.state)
        self.assertIn(("change_type", (server.id, "cx11", False)), self.client.calls)
        self.assertEqual(self.state.get("server").server_type, "cx11")

    def test_downgrade_skips_running_server(self) -> None:
        self.config.upgrade_server_type = "cx41"
        self.boot_server()
        DowngradeServerType(self.client, self.poller(), self.config).run(self.state)
        self.assertFalse(self.client.called("change_type"))


class RescueTests(StepTestCase):
    def test_rescue_publishes_password(self) -> None:
        self.config.rescue = "linux64"
        server = self.boot_server()
        EnableRescue(self.client, self.poller(), self.config).run(self.state)
        self.assertEqual(self.state.get("rescue_password"), "rescue-secret")
        self.assertIn(("enable_rescue", (server.id, "linux64", [1])), self.client.calls)
        self.assertTrue(self.client.called("reboot"))

    def test_reused_boot_deadline_can_expire(self) -> None:
        self.config.rescue = "linux64"
        self.config.rescue_fresh_deadline = False
        self.boot_server()
        self.clock.now = self.state.get("boot_deadline") + 1
        with self.assertRaises(PollTimeoutError):
            EnableRescue(self.client, self.poller(), self.config).run(self.state)


class ConnectivityTests(StepTestCase):
    def test_publishes_connection_after_probe_succeeds(self) -> None:
        CreateSSHKey(self.client, self.config, key_generator=fake_key_generator).run(self.state)
        self.boot_server()
        probe = FakeProbe(failures=2)
        WaitForConnectivity(self.config, self.poller(), probe).run(self.state)
        info = self.state.get("connection")
        self.assertEqual(info.host, "203.0.113.10")
        self.assertEqual(info.port, 22)
        self.assertEqual(info.private_key, "-----BEGIN FAKE KEY-----")
        self.assertEqual(len(probe.checked), 3)

    def test_unreachable_server_times_out(self) -> None:
        self.config.communicator = CommunicatorConfig(timeout=5.0)
        self.boot_server()
        step = WaitForConnectivity(self.config, self.poller(), FakeProbe(always_fail=True))
        with self.assertRaises(ConnectivityTimeoutError) as ctx:
            step.run(self.state)
        self.assertEqual(ctx.exception.last_error, "connection refused")

    def test_each_attempt_is_capped_by_remaining_time(self) -> None:
        self.config.communicator = CommunicatorConfig(timeout=5.0)
        self.boot_server()
        probe = FakeProbe(always_fail=True, clock=self.clock, hang=2.0)
        step = WaitForConnectivity(self.config, self.poller(), probe)
        started = self.clock.now
        with self.assertRaises(ConnectivityTimeoutError):
            step.run(self.state)
        self.assertEqual(probe.timeouts, [5.0, 2.5])
        self.assertLessEqual(self.clock.now - started, 5.0)

    def test_without_probe_only_publishes(self) -> None:
        self.config.communicator = CommunicatorConfig(type="none")
        self.boot_server()
        WaitForConnectivity(self.config, self.poller(), None).run(self.state)
        self.assertEqual(self.state.get("connection").communicator, "none")

    def test_server_without_address_fails(self) -> None:
        client = FakeCloudClient(ipv4=None)
        self.config.public_ipv4_disabled = True
        self.config.public_ipv6_disabled = True
        self.boot_server(client)
        with self.assertRaises(ConnectivityTimeoutError):
            WaitForConnectivity(self.config, self.poller(client), FakeProbe()).run(self.state)


class ProvisionAndSnapshotTests(StepTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.boot_server()
        self.config.communicator = CommunicatorConfig(type="none")
        WaitForConnectivity(self.config, self.poller(), None).run(self.state)

    def test_provisioner_false_halts(self) -> None:
        self.assertIs(Provision(lambda info: False).run(self.state), StepOutcome.HALT)
        self.assertIs(Provision(lambda info: None).run(self.state), StepOutcome.CONTINUE)

    def test_provisioner_exception_is_wrapped(self) -> None:
        def provisioner(info):
            raise OSError("apt-get failed")

        with self.assertRaises(ProvisioningError) as ctx:
            Provision(provisioner).run(self.state)
        self.assertIsInstance(ctx.exception.__cause__, OSError)

    def test_snapshot_uses_name_and_labels(self) -> None:
        self.config.snapshot_labels = {"role": "base"}
        poller = self.poller()
        ShutdownServer(self.client, poller).run(self.state)
        CreateSnapshot(self.client, poller, self.config).run(self.state)
        snapshot = self.state.get("snapshot")
        self.assertEqual(snapshot.description, "snap-test")
        server_id = self.state.get("server").id
        self.assertIn(("create_image", (server_id, "snap-test", {"role": "base"})), self.client.calls)


if __name__ == "__main__":
    unittest.main()
