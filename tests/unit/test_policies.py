import unittest

from hpcjobs.config import RuntimeConfig
from hpcjobs.execution.policies import ReasonCode, StepwiseMonitorPolicy, Stop, Wait
from tests.unit.fakes import FakeClock


class TestStepwiseMonitorPolicy(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()

    def make_policy(self, **kwargs) -> StepwiseMonitorPolicy:
        kwargs.setdefault("steps", ((2, 1), (1, 10)))
        return StepwiseMonitorPolicy(clock=self.clock, jitter=False, **kwargs)

    def test_steps(self):
        """Waits follow the steps in order, with the last step repeating."""

        policy = self.make_policy()
        waits = [policy.millis_to_wait(False) for _ in range(4)]
        self.assertEqual([1000, 1000, 10000, 10000], waits)

    def test_failure_backoff(self):
        """Waits after consecutive failures grow exponentially up to a maximum, and a
        success resets the count."""

        policy = self.make_policy(steps=((1, 2),), max_failure_wait_seconds=10)
        waits = [policy.millis_to_wait(True) for _ in range(4)]
        self.assertEqual([2000, 4000, 8000, 10000], waits)
        self.assertEqual(4, policy.consecutive_failures)

        self.assertEqual(2000, policy.millis_to_wait(False))
        self.assertEqual(0, policy.consecutive_failures)

    def test_jitter_bounded(self):
        """Jitter adds at most a tenth to a failure wait."""

        policy = StepwiseMonitorPolicy(steps=((1, 2),), clock=self.clock)
        self.assertTrue(2000 <= policy.millis_to_wait(True) <= 2200)

    def test_too_many_failures(self):
        """Monitoring is given up after the maximum number of consecutive failures."""

        policy = self.make_policy(max_consecutive_failures=2)
        self.assertEqual(Wait(1000), policy.decide(True))
        self.assertEqual(Stop(ReasonCode.TOO_MANY_FAILURES), policy.decide(True))
        self.assertIs(ReasonCode.TOO_MANY_FAILURES, policy.reason_code)

    def test_unlimited_failures(self):
        policy = self.make_policy(max_consecutive_failures=0)
        for _ in range(50):
            self.assertIsNotNone(policy.millis_to_wait(True))

    def test_time_expired(self):
        """Monitoring is given up once the maximum elapsed time has passed."""

        policy = self.make_policy(max_elapsed_seconds=60)
        self.assertIsInstance(policy.decide(False), Wait)
        self.clock.advance(60)
        self.assertEqual(Stop(ReasonCode.TIME_EXPIRED), policy.decide(False))

    def test_keep_connection(self):
        """The connection is kept only while waits are short."""

        policy = self.make_policy(keep_connection_threshold_seconds=5)
        self.assertTrue(policy.keep_connection())
        policy.millis_to_wait(False)
        policy.millis_to_wait(False)
        self.assertFalse(policy.keep_connection())

    def test_initial_queuing_retries(self):
        policy = self.make_policy(initial_queuing_retries=2)
        self.assertEqual([True, True, False], [policy.retry_for_initial_queuing() for _ in range(3)])

    def test_no_steps(self):
        with self.assertRaises(ValueError):
            StepwiseMonitorPolicy(steps=())

    def test_from_config(self):
        config = RuntimeConfig(monitor_steps=((1, 3),), max_consecutive_failures=1)
        policy = StepwiseMonitorPolicy.from_config(config, clock=self.clock, jitter=False)
        self.assertEqual(3000, policy.millis_to_wait(False))
        self.assertIsNone(policy.millis_to_wait(True))


if __name__ == "__main__":
    unittest.main()
