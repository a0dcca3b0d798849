import unittest

from hpcjobs.errors import FixedArgOverrideError, MissingValueError
from hpcjobs.resolution.filters import merge_archive_filters
from hpcjobs.resolution.parameters import ParameterSet, resolve_parameter_set
from hpcjobs.resolution.types import (
    UNSET,
    ArchiveFilter,
    ArgSpec,
    EnvVar,
    InputMode,
    is_unset,
)
from tests.utilities.utilities import args_by_name, make_arg, make_var, vars_by_key


class TestArgSpecWireFormat(unittest.TestCase):
    def test_from_dict(self):
        """Arguments are read from dicts with camelCase keys."""

        spec = ArgSpec.from_dict(
            {"name": "a", "arg": "-a", "inputMode": "FIXED", "include": True, "notes": {}}
        )
        self.assertEqual(
            ArgSpec(name="a", arg="-a", input_mode=InputMode.FIXED, include=True, notes={}),
            spec,
        )
        self.assertEqual("FIXED", spec.to_dict()["inputMode"])

    def test_invalid_fields(self):
        """Invalid input modes and field types are rejected."""

        with self.assertRaises(ValueError):
            ArgSpec.from_dict({"name": "a", "inputMode": "SOMETIMES"})

        with self.assertRaises(TypeError):
            ArgSpec.from_dict({"name": "a", "include": "yes"})

        with self.assertRaises(TypeError):
            ArgSpec.from_dict(["a"])


class TestEnvVarWireFormat(unittest.TestCase):
    def test_missing_value_is_unset(self):
        """A missing or null value is read as UNSET, and written back as None."""

        for data in [{"key": "A"}, {"key": "A", "value": None}]:
            with self.subTest(data=data):
                var = EnvVar.from_dict(data)
                self.assertIs(UNSET, var.value)
                self.assertIsNone(var.to_dict()["value"])

    def test_empty_value_is_concrete(self):
        """The empty string is a concrete value, distinct from UNSET."""

        var = EnvVar.from_dict({"key": "A", "value": ""})
        self.assertEqual("", var.value)
        self.assertFalse(is_unset(var.value))

    def test_unset_is_singleton(self):
        """UNSET is a falsy singleton."""

        self.assertIs(UNSET, type(UNSET)())
        self.assertFalse(UNSET)
        self.assertEqual("UNSET", repr(UNSET))


class TestMergeArchiveFilters(unittest.TestCase):
    def test_patterns_appended(self):
        """The application's patterns are appended to the request's."""

        request = ArchiveFilter(includes=["*.out"], excludes=["tmp*"])
        merge_archive_filters(request, ArchiveFilter(includes=["*.log"], excludes=["*.core"]))
        self.assertEqual(["*.out", "*.log"], request.includes)
        self.assertEqual(["tmp*", "*.core"], request.excludes)

    def test_include_launch_files(self):
        """The request's choice of archiving launch files wins over the application's,
        and defaults to True."""

        cases = [
            (None, None, True),
            (None, False, False),
            (True, False, True),
            (False, None, False),
        ]
        for request_choice, app_choice, expected in cases:
            with self.subTest(request_choice=request_choice, app_choice=app_choice):
                request = ArchiveFilter(include_launch_files=request_choice)
                merge_archive_filters(request, ArchiveFilter(include_launch_files=app_choice))
                self.assertEqual(expected, request.include_launch_files)

    def test_no_app_filter(self):
        """Launch files are archived by default even without an application filter."""

        request = ArchiveFilter()
        merge_archive_filters(request, None)
        self.assertTrue(request.include_launch_files)


class TestResolveParameterSet(unittest.TestCase):
    def setUp(self) -> None:
        self.app = ParameterSet(
            app_args=[
                make_arg("input", None, InputMode.REQUIRED),
                make_arg("verbose", "-v", InputMode.INCLUDE_BY_DEFAULT),
            ],
            container_args=[make_arg("mount", "-B /data", InputMode.FIXED)],
            scheduler_options=[make_arg("acct", "--account=proj", InputMode.INCLUDE_ON_DEMAND)],
            env_variables=[make_var("THREADS", "4", InputMode.INCLUDE_BY_DEFAULT)],
            archive_filter=ArchiveFilter(excludes=["*.tmp"]),
        )

    def test_resolves_all_parts(self):
        """Every part of the request's parameter set is resolved in place."""

        request = ParameterSet(
            app_args=[make_arg("input", "data.csv")],
            scheduler_options=[make_arg("acct")],
            env_variables=[make_var("MODE", "fast")],
        )
        resolved = resolve_parameter_set(
            request, self.app, [make_var("SITE", "tacc", InputMode.FIXED)], "gpu"
        )

        self.assertIs(request, resolved)
        self.assertEqual({"input": "data.csv", "verbose": "-v"}, args_by_name(request.app_args))
        self.assertEqual({"mount": "-B /data"}, args_by_name(request.container_args))
        self.assertEqual(
            ["--account=proj", "--hpcjobs-profile gpu"],
            [spec.arg for spec in request.scheduler_options],
        )
        self.assertEqual(
            {"MODE": "fast", "THREADS": "4", "SITE": "tacc"},
            vars_by_key(request.env_variables),
        )
        self.assertEqual(["*.tmp"], request.archive_filter.excludes)
        self.assertTrue(request.archive_filter.include_launch_files)

    def test_errors_propagate(self):
        """Resolution errors in any part abort the resolution."""

        with self.assertRaises(MissingValueError):
            resolve_parameter_set(ParameterSet(), self.app)

        request = ParameterSet(
            app_args=[make_arg("input", "x")],
            container_args=[make_arg("mount", "-B /other")],
        )
        with self.assertRaises(FixedArgOverrideError):
            resolve_parameter_set(request, self.app)

    def test_dict_round_trip(self):
        """A resolved parameter set can be written to and read from its wire format."""

        request = ParameterSet(app_args=[make_arg("input", "data.csv")])
        resolve_parameter_set(request, self.app)
        self.assertEqual(request, ParameterSet.from_dict(request.to_dict()))

    def test_from_dict_defaults(self):
        """Missing parts of a parameter set default to empty."""

        self.assertEqual(ParameterSet(), ParameterSet.from_dict(None))
        self.assertEqual(ParameterSet(), ParameterSet.from_dict({}))


if __name__ == "__main__":
    unittest.main()
