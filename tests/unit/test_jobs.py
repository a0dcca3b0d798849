import unittest

from hpcjobs.execution.jobs import (
    MONITORED_PHASES,
    TERMINAL_PHASES,
    Job,
    JobCondition,
    JobId,
    JobPhase,
)
from tests.utilities.utilities import exact


class TestJobId(unittest.TestCase):
    def test_create_from_valid_ids(self):
        """A job ID can be created from a string of letters, digits, hyphens and
        underscores, an integer or another job ID."""

        for job_id in ["1", 99, "00001", "3f2b-9c_a", JobId("abc")]:
            try:
                _ = JobId(job_id)
            except Exception:
                self.fail(
                    f"Should have been able to construct JobId with job_id = {job_id}."
                )

    def test_invalid_id_error(self):
        """A ValueError is raised if the supplied job ID's string representation
        contains characters other than letters, digits, hyphens and underscores."""

        for job_id in ["", "rm -rf ~", "!", "0.1", "a/b", [1]]:
            with self.subTest(job_id=job_id):
                with self.assertRaisesRegex(
                    ValueError,
                    exact(
                        "Expected 'job_id' to define a string consisting only of letters, "
                        "digits, hyphens and underscores, but received "
                        f"'{str(job_id)}' instead."
                    ),
                ):
                    _ = JobId(job_id)

    def test_string_method(self):
        """A JobID instance can be converted to a string."""

        for job_id in ["1", 99, "job-1"]:
            self.assertEqual(str(job_id), str(JobId(job_id)))

    def test_equality(self):
        """Two JobId instances are equal if their string representations are equal."""

        self.assertEqual(JobId("1"), JobId(1))
        self.assertNotEqual(JobId("1"), JobId("01"))
        self.assertNotEqual(JobId("1"), "1")

    def test_hashable(self):
        """JobId instances can be used as dictionary keys."""

        d = {JobId("a"): 1}
        self.assertEqual(1, d[JobId("a")])

    def test_repr(self):
        self.assertEqual("JobId('job-1')", repr(JobId("job-1")))


class TestJob(unittest.TestCase):
    def test_init_defaults(self):
        """A new job is queued and has no condition, message or outcome."""

        job = Job("job-1")
        self.assertEqual(JobId("job-1"), job.id)
        self.assertIsNone(job.remote_job_id)
        self.assertIsNone(job.exec_dir)
        self.assertTrue(job.archive_on_app_error)
        self.assertEqual(JobPhase.QUEUED, job.phase)
        self.assertIsNone(job.condition)
        self.assertIsNone(job.last_message)
        self.assertIsNone(job.remote_outcome)
        self.assertIsNone(job.exit_code)

    def test_init_arg_validation(self):
        """Invalid arguments raise a ValueError or TypeError."""

        with self.assertRaisesRegex(
            ValueError,
            exact(
                f"Expected 'id_' to define a valid {JobId}, but received 'a b' instead."
            ),
        ):
            Job("a b")

        with self.assertRaisesRegex(
            TypeError,
            exact(
                f"Expected 'remote_job_id' to be of type {str} or None but received "
                f"{int} instead."
            ),
        ):
            Job("1", remote_job_id=1234)

        with self.assertRaises(TypeError):
            Job("1", archive_on_app_error="yes")

        with self.assertRaises(TypeError):
            Job("1", phase="RUNNING")

    def test_immutable_attributes(self):
        """The identity and remote details of a job cannot be changed."""

        job = Job("1", remote_job_id="42", exec_dir="/tmp/j")
        for attr in ["id", "remote_job_id", "exec_dir", "archive_on_app_error"]:
            with self.subTest(attr=attr):
                with self.assertRaises(AttributeError):
                    setattr(job, attr, None)

    def test_equality(self):
        """Jobs are equal if their IDs are equal."""

        self.assertEqual(Job("1", remote_job_id="a"), Job("1", remote_job_id="b"))
        self.assertNotEqual(Job("1"), Job("2"))
        self.assertEqual(1, len({Job("1"), Job("1")}))


class TestPhases(unittest.TestCase):
    def test_phase_groups(self):
        self.assertEqual({JobPhase.QUEUED, JobPhase.RUNNING}, MONITORED_PHASES)
        self.assertIn(JobPhase.CANCELLED, TERMINAL_PHASES)
        self.assertNotIn(JobPhase.PAUSED, TERMINAL_PHASES)

    def test_condition_description(self):
        self.assertEqual("Job cancelled by user", JobCondition.CANCELLED_BY_USER.description)


if __name__ == "__main__":
    unittest.main()
