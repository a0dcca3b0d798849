import unittest

from hpcjobs.config import RuntimeConfig
from hpcjobs.errors import ChannelError, UnknownJobError
from hpcjobs.execution.jobs import JobCondition, JobPhase, RemoteOutcome
from hpcjobs.execution.probes import RemoteStatus
from hpcjobs.execution.store import InMemoryJobStore
from hpcjobs.execution.workers import MonitorManager
from tests.unit.fakes import FakeConnection, FakeProbe, ScriptedPolicy
from tests.utilities.utilities import make_job

JOIN_TIMEOUT = 5


class SlowPolicy(ScriptedPolicy):
    """A policy that waits a long time between polls, so that jobs stay monitored until
    a command interrupts them."""

    def millis_to_wait(self, last_attempt_failed):
        super().millis_to_wait(last_attempt_failed)
        return 60 * 1000


def probe_sessions(*scripts):
    """Make a probe factory giving each successive monitoring session the next script of
    statuses."""

    scripts = list(scripts)

    def factory(context):
        script = scripts.pop(0) if len(scripts) > 1 else scripts[0]
        return FakeProbe(context, script)

    return factory


class TestMonitorManager(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryJobStore()
        self.config = RuntimeConfig(
            max_recovery_attempts=2, recovery_initial_delay=0.0, recovery_max_delay=0.0
        )

    def make_manager(self, policy_factory=ScriptedPolicy, config=None) -> MonitorManager:
        manager = MonitorManager(
            self.store,
            lambda job: FakeConnection(),
            config=self.config if config is None else config,
            policy_factory=policy_factory,
        )
        self.addCleanup(manager.shutdown, JOIN_TIMEOUT)
        return manager

    def test_queued_job_monitored_to_completion(self):
        """A queued job is moved to RUNNING once it starts and FINISHED once it
        completes."""

        job = make_job()
        manager = self.make_manager()
        manager.monitor(job, probe_sessions([RemoteStatus.ACTIVE], [RemoteStatus.DONE]))
        manager.join(JOIN_TIMEOUT)

        self.assertEqual(JobPhase.FINISHED, job.phase)
        self.assertEqual(RemoteOutcome.FINISHED, self.store.get_outcome(job))
        self.assertFalse(manager.is_monitoring(job.id))
        self.assertIsNotNone(self.store.read_bookkeeping(job)["remote_started"])

    def test_failed_job(self):
        job = make_job(phase=JobPhase.RUNNING)
        manager = self.make_manager()
        manager.monitor(job, probe_sessions([RemoteStatus.FAILED]))
        manager.join(JOIN_TIMEOUT)

        self.assertEqual(JobPhase.FAILED, job.phase)
        self.assertEqual(RemoteOutcome.FAILED, self.store.get_outcome(job))

    def test_recoverable_error_resumed(self):
        """A session ended by a recoverable error is resumed in a new session."""

        job = make_job(phase=JobPhase.RUNNING)
        manager = self.make_manager()
        manager.monitor(
            job, probe_sessions([ChannelError("lost")], [RemoteStatus.DONE])
        )
        manager.join(JOIN_TIMEOUT)

        self.assertEqual(JobPhase.FINISHED, job.phase)
        self.assertEqual(RemoteOutcome.FINISHED, self.store.get_outcome(job))

    def test_recovery_attempts_exhausted(self):
        """A job is failed, without archiving, once recovery attempts are exhausted."""

        job = make_job(phase=JobPhase.RUNNING)
        manager = self.make_manager(
            config=RuntimeConfig(max_recovery_attempts=1, recovery_initial_delay=0.0)
        )
        manager.monitor(job, probe_sessions([ChannelError("lost")]))
        manager.join(JOIN_TIMEOUT)

        self.assertEqual(JobPhase.FAILED, job.phase)
        self.assertEqual(RemoteOutcome.FAILED_SKIP_ARCHIVE, self.store.get_outcome(job))
        self.assertEqual(JobCondition.JOB_REMOTE_ACCESS_ERROR, job.condition)

    def test_fatal_error(self):
        """A job is failed immediately after an unrecoverable error."""

        job = make_job(phase=JobPhase.RUNNING)
        manager = self.make_manager()
        manager.monitor(job, probe_sessions([RuntimeError("bad output")]))
        manager.join(JOIN_TIMEOUT)

        self.assertEqual(JobPhase.FAILED, job.phase)
        self.assertEqual("bad output", job.last_message)
        self.assertEqual(RemoteOutcome.FAILED_SKIP_ARCHIVE, self.store.get_outcome(job))
        self.assertEqual(JobCondition.JOB_EXECUTION_MONITORING_ERROR, job.condition)

    def test_cancel(self):
        """A cancel command interrupts the wait between polls and cancels the job."""

        job = make_job(phase=JobPhase.RUNNING)
        manager = self.make_manager(policy_factory=SlowPolicy)
        manager.monitor(job, probe_sessions([RemoteStatus.ACTIVE]))
        manager.request_status(job.id)
        manager.cancel(job.id)
        manager.join(JOIN_TIMEOUT)

        self.assertEqual(JobPhase.CANCELLED, job.phase)
        self.assertEqual(JobCondition.CANCELLED_BY_USER, job.condition)
        self.assertFalse(manager.is_monitoring(job.id))

    def test_pause(self):
        job = make_job(phase=JobPhase.RUNNING)
        manager = self.make_manager(policy_factory=SlowPolicy)
        manager.monitor(job, probe_sessions([RemoteStatus.ACTIVE]))
        self.assertTrue(manager.is_monitoring(job.id))
        manager.pause(str(job.id))
        manager.join(JOIN_TIMEOUT)

        self.assertEqual(JobPhase.PAUSED, job.phase)

    def test_already_monitored(self):
        job = make_job(phase=JobPhase.RUNNING)
        manager = self.make_manager(policy_factory=SlowPolicy)
        manager.monitor(job, probe_sessions([RemoteStatus.ACTIVE]))
        with self.assertRaises(RuntimeError):
            manager.monitor(job, probe_sessions([RemoteStatus.ACTIVE]))

    def test_unknown_job(self):
        """Commands cannot be sent to jobs that aren't being monitored."""

        manager = self.make_manager()
        with self.assertRaises(UnknownJobError):
            manager.cancel("no-such-job")

    def test_shutdown_stops_monitoring(self):
        """Shutting down stops monitoring jobs without changing their phase or cleaning
        up their remote jobs, and no more jobs can be monitored."""

        job = make_job(phase=JobPhase.RUNNING)
        probes = []

        def factory(context):
            probes.append(FakeProbe(context, [RemoteStatus.ACTIVE]))
            return probes[-1]

        manager = self.make_manager(policy_factory=SlowPolicy)
        manager.monitor(job, factory)
        manager.shutdown(JOIN_TIMEOUT)

        self.assertEqual(JobPhase.RUNNING, job.phase)
        self.assertIsNone(self.store.get_outcome(job))
        self.assertEqual([0], [probe.clean_ups for probe in probes])
        self.assertEqual([0], [probe.cancels for probe in probes])
        with self.assertRaises(RuntimeError):
            manager.monitor(make_job("job-2"), probe_sessions([RemoteStatus.ACTIVE]))

    def test_job_resumed_after_shutdown(self):
        """A job whose monitoring was stopped by a shutdown is monitored to completion
        by a new manager."""

        job = make_job(phase=JobPhase.RUNNING)
        manager = self.make_manager(policy_factory=SlowPolicy)
        manager.monitor(job, probe_sessions([RemoteStatus.ACTIVE]))
        manager.shutdown(JOIN_TIMEOUT)

        new_manager = self.make_manager()
        new_manager.monitor(job, probe_sessions([RemoteStatus.DONE]))
        new_manager.join(JOIN_TIMEOUT)

        self.assertEqual(JobPhase.FINISHED, job.phase)
        self.assertEqual(RemoteOutcome.FINISHED, self.store.get_outcome(job))
        self.assertEqual(JobCondition.NORMAL_COMPLETION, job.condition)


if __name__ == "__main__":
    unittest.main()
