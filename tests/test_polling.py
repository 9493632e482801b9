import threading
import unittest

from snapshot_builder.errors import ActionFailedError, BuildCancelledError, PollTimeoutError
from snapshot_builder.models import ActionHandle, ActionStatus
from snapshot_builder.polling import ActionPoller

from tests.fakes import FakeClock, FakeCloudClient


class ActionPollerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.client = FakeCloudClient(
            action_script={
                "slow": ["running", "running", "success"],
                "broken": ["running", ("error", "quota exceeded")],
                "stuck": ["running"],
            }
        )
        self.poller = ActionPoller(
            self.client, 2.0, action_timeout=10.0, clock=self.clock, sleep=self.clock.sleep
        )

    def _handle(self, command: str) -> ActionHandle:
        return self.client._action(command)

    def test_waits_until_success_with_single_interval(self) -> None:
        result = self.poller.wait(self._handle("slow"), "slow action", self.poller.deadline())
        self.assertIs(result.status, ActionStatus.SUCCESS)
        # 初始句柄为 running，之后每次轮询前 sleep 一个间隔
        self.assertEqual(self.clock.sleeps, [2.0, 2.0, 2.0])

    def test_already_finished_handle_is_not_polled(self) -> None:
        handle = ActionHandle(id=1, status=ActionStatus.SUCCESS)
        self.poller.wait(handle, "done", self.poller.deadline())
        self.assertFalse(self.client.called("get_action"))

    def test_error_raises_action_failed(self) -> None:
        with self.assertRaises(ActionFailedError) as ctx:
            self.poller.wait(self._handle("broken"), "broken action", self.poller.deadline())
        self.assertEqual(ctx.exception.message, "quota exceeded")
        self.assertEqual(ctx.exception.code, "action_failed")

    def test_timeout_never_sleeps_past_deadline(self) -> None:
        deadline = self.poller.deadline(timeout=5.0)
        with self.assertRaises(PollTimeoutError):
            self.poller.wait(self._handle("stuck"), "stuck action", deadline)
        self.assertEqual(self.clock.sleeps, [2.0, 2.0, 1.0])
        self.assertEqual(self.clock.now, deadline)

    def test_deadline_is_capped_by_build_deadline(self) -> None:
        self.assertEqual(self.poller.deadline(build_deadline=self.clock.now + 3), self.clock.now + 3)
        self.assertEqual(self.poller.deadline(), self.clock.now + 10.0)

    def test_wait_until_returns_accepted_value(self) -> None:
        values = iter([1, 2, 3])
        result = self.poller.wait_until(lambda: next(values), lambda v: v == 3, "three", self.poller.deadline())
        self.assertEqual(result, 3)

    def test_cancel_is_observed_between_polls(self) -> None:
        cancel = threading.Event()

        def sleep(seconds: float) -> None:
            self.clock.sleep(seconds)
            cancel.set()

        poller = ActionPoller(self.client, 2.0, cancel=cancel, clock=self.clock, sleep=sleep)
        with self.assertRaises(BuildCancelledError):
            poller.wait(self._handle("stuck"), "stuck action", poller.deadline())
        self.assertEqual(len(self.clock.sleeps), 1)

    def test_cancel_event_interrupts_real_wait(self) -> None:
        cancel = threading.Event()
        cancel.set()
        poller = ActionPoller(self.client, 60.0, cancel=cancel)
        with self.assertRaises(BuildCancelledError):
            poller.wait(self._handle("stuck"), "stuck action", poller.deadline())


if __name__ == "__main__":
    unittest.main()
