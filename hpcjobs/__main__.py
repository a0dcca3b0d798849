import argparse
import json
import pathlib
import sys
from importlib.metadata import PackageNotFoundError, version
from typing import Any, Optional

from hpcjobs.config import RuntimeConfig
from hpcjobs.errors import ResolutionError
from hpcjobs.resolution.parameters import ParameterSet, resolve_parameter_set
from hpcjobs.resolution.types import EnvVar
from hpcjobs.utilities.log_setup import setup_logging

EXIT_RESOLUTION_ERROR = 2


def get_version() -> str:
    """Retrieve the version of hpcjobs currently installed."""

    try:
        return version("hpcjobs")
    except PackageNotFoundError:
        return "Package not found."


def _load_json(path: pathlib.Path) -> Any:
    with open(path, mode="r", encoding="utf-8") as json_file:
        return json.load(json_file)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hpcjobs",
        description="Resolve the parameters of jobs run on remote HPC and cloud systems.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"hpcjobs {get_version()}",
        help="show the current installed version of hpcjobs and exit",
    )
    parser.add_argument(
        "--config",
        type=pathlib.Path,
        default=None,
        help=(
            "path to a JSON file of runtime settings (HPCJOBS_* environment "
            "variables override it)"
        ),
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="the minimum level of log messages (defaults to the configured level)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    resolve_parser = subparsers.add_parser(
        "resolve",
        help="resolve a job request's parameter set and print it as JSON",
    )
    resolve_parser.add_argument(
        "request",
        type=pathlib.Path,
        help="path to a JSON file containing the job request's parameter set",
    )
    resolve_parser.add_argument(
        "--app",
        type=pathlib.Path,
        default=None,
        help="path to a JSON file containing the application's parameter set",
    )
    resolve_parser.add_argument(
        "--system",
        type=pathlib.Path,
        default=None,
        help=(
            "path to a JSON file with the execution system's 'envVariables' and "
            "'schedulerProfile'"
        ),
    )
    resolve_parser.add_argument(
        "--profile",
        default=None,
        help="the scheduler profile to apply (overrides the system's profile)",
    )
    return parser


def resolve(args: argparse.Namespace, config: RuntimeConfig) -> int:
    """Resolve the parameter set described by command line arguments, printing the
    result as JSON."""

    request = ParameterSet.from_dict(_load_json(args.request))
    app = ParameterSet.from_dict(_load_json(args.app)) if args.app else None

    system_env = None
    profile: Optional[str] = None
    if args.system:
        system = _load_json(args.system) or {}
        system_env = [EnvVar.from_dict(d) for d in system.get("envVariables") or []]
        profile = system.get("schedulerProfile")

    if args.profile is not None:
        profile = args.profile

    try:
        resolved = resolve_parameter_set(request, app, system_env, profile, config)
    except ResolutionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_RESOLUTION_ERROR

    print(json.dumps(resolved.to_dict(), indent=2))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """The entry point into the hpcjobs command line application."""

    args = _build_parser().parse_args(argv)
    config = RuntimeConfig.from_file(args.config) if args.config else RuntimeConfig()
    config = RuntimeConfig.from_env(base=config)
    setup_logging(args.log_level or config.log_level, config.log_file)

    return resolve(args, config)


if __name__ == "__main__":
    sys.exit(main())
