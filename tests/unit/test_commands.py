import unittest
from unittest.mock import patch

from hpcjobs.errors import AsyncCommandReceived
from hpcjobs.execution.commands import (
    CommandType,
    JobCommand,
    QueueCommandChannel,
    handle_command,
)
from hpcjobs.execution.context import ExecutionContext
from hpcjobs.execution.jobs import JobCondition, JobPhase
from hpcjobs.execution.probes import RemoteStatus
from hpcjobs.execution.store import InMemoryJobStore
from tests.unit.fakes import FakeConnection, FakeProbe
from tests.utilities.utilities import make_job


class TestQueueCommandChannel(unittest.TestCase):
    def test_poll(self):
        """Commands are delivered in order, and polling an empty channel returns
        None."""

        channel = QueueCommandChannel()
        self.assertIsNone(channel.poll())

        pause = JobCommand(CommandType.PAUSE, sender_id="admin")
        channel.send(pause)
        channel.send(JobCommand(CommandType.STATUS))
        self.assertEqual(pause, channel.poll())
        self.assertEqual(CommandType.STATUS, channel.poll().type)
        self.assertIsNone(channel.poll())


class TestHandleCommand(unittest.TestCase):
    def setUp(self) -> None:
        self.job = make_job()
        self.store = InMemoryJobStore()
        self.context = ExecutionContext(self.job, self.store, FakeConnection())
        self.probe = FakeProbe(self.context, [RemoteStatus.ACTIVE])

    def test_status_request_continues(self):
        """A status request leaves the job's phase unchanged and doesn't end
        monitoring."""

        handle_command(JobCommand(CommandType.STATUS), self.context, self.probe)
        self.assertEqual(JobPhase.QUEUED, self.job.phase)

    def test_pause(self):
        """A pause request pauses the job without cancelling the remote job."""

        with self.assertRaises(AsyncCommandReceived) as cm:
            handle_command(JobCommand(CommandType.PAUSE), self.context, self.probe)

        self.assertEqual(CommandType.PAUSE, cm.exception.command.type)
        self.assertEqual(JobPhase.PAUSED, self.job.phase)
        self.assertEqual(0, self.probe.cancels)

    def test_cancel(self):
        """A cancel request cancels the job, including its remote execution."""

        with self.assertRaises(AsyncCommandReceived):
            handle_command(JobCommand(CommandType.CANCEL), self.context, self.probe)

        self.assertEqual(JobPhase.CANCELLED, self.job.phase)
        self.assertEqual(JobCondition.CANCELLED_BY_USER, self.job.condition)
        self.assertEqual(1, self.probe.cancels)

    def test_stop(self):
        """A stop request ends monitoring without changing the job's phase or cancelling
        the remote job."""

        with self.assertRaises(AsyncCommandReceived) as cm:
            handle_command(JobCommand(CommandType.STOP), self.context, self.probe)

        self.assertEqual(CommandType.STOP, cm.exception.command.type)
        self.assertEqual(JobPhase.QUEUED, self.job.phase)
        self.assertIsNone(self.job.last_message)
        self.assertEqual(0, self.probe.cancels)

    def test_cancel_when_phase_not_recorded(self):
        """A cancel request still cancels the remote job and ends monitoring if the
        store fails to record the new phase."""

        with patch.object(self.store, "set_phase", side_effect=RuntimeError("disk full")):
            with self.assertRaises(AsyncCommandReceived):
                handle_command(JobCommand(CommandType.CANCEL), self.context, self.probe)

        self.assertEqual(JobPhase.QUEUED, self.job.phase)
        self.assertEqual(1, self.probe.cancels)

    def test_pause_when_phase_not_recorded(self):
        with patch.object(self.store, "set_phase", side_effect=RuntimeError("disk full")):
            with self.assertRaises(AsyncCommandReceived):
                handle_command(JobCommand(CommandType.PAUSE), self.context, self.probe)

        self.assertEqual(0, self.probe.cancels)

    def test_cancel_failure_tolerated(self):
        """A failure to cancel the remote job doesn't prevent the job being
        cancelled."""

        def fail():
            raise RuntimeError("no route to host")

        self.probe.cancel_remote_job = fail
        with self.assertRaises(AsyncCommandReceived):
            handle_command(JobCommand(CommandType.CANCEL), self.context, self.probe)

        self.assertEqual(JobPhase.CANCELLED, self.job.phase)


if __name__ == "__main__":
    unittest.main()
