import dataclasses
from typing import Optional

from loguru import logger

from hpcjobs.config import RuntimeConfig
from hpcjobs.resolution.argspecs import merge_arg_spec_list, merge_scheduler_profile
from hpcjobs.resolution.envvars import merge_env_variables
from hpcjobs.resolution.filters import merge_archive_filters
from hpcjobs.resolution.types import ArchiveFilter, ArgKind, ArgSpec, EnvVar
from hpcjobs.types import JsonDict


@dataclasses.dataclass
class ParameterSet:
    """The arguments, scheduler options, environment and archive filter of a job.

    The same type describes both the parameter set defined by an application and the
    parameter set given in a job request; after resolution the request's parameter set
    is the job's final parameter set.
    """

    app_args: list[ArgSpec] = dataclasses.field(default_factory=list)
    container_args: list[ArgSpec] = dataclasses.field(default_factory=list)
    scheduler_options: list[ArgSpec] = dataclasses.field(default_factory=list)
    env_variables: list[EnvVar] = dataclasses.field(default_factory=list)
    archive_filter: ArchiveFilter = dataclasses.field(default_factory=ArchiveFilter)

    def to_dict(self) -> JsonDict:
        return {
            "appArgs": [spec.to_dict() for spec in self.app_args],
            "containerArgs": [spec.to_dict() for spec in self.container_args],
            "schedulerOptions": [spec.to_dict() for spec in self.scheduler_options],
            "envVariables": [var.to_dict() for var in self.env_variables],
            "archiveFilter": self.archive_filter.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Optional[JsonDict]) -> "ParameterSet":
        data = data or {}
        if not isinstance(data, dict):
            raise TypeError(
                f"Expected a parameter set to be described by a {dict} but received "
                f"{type(data)} instead."
            )

        return cls(
            app_args=[ArgSpec.from_dict(d) for d in data.get("appArgs") or []],
            container_args=[ArgSpec.from_dict(d) for d in data.get("containerArgs") or []],
            scheduler_options=[
                ArgSpec.from_dict(d) for d in data.get("schedulerOptions") or []
            ],
            env_variables=[EnvVar.from_dict(d) for d in data.get("envVariables") or []],
            archive_filter=ArchiveFilter.from_dict(data.get("archiveFilter")),
        )


def resolve_parameter_set(
    request: ParameterSet,
    app: Optional[ParameterSet] = None,
    system_env: Optional[list[EnvVar]] = None,
    scheduler_profile: Optional[str] = None,
    config: Optional[RuntimeConfig] = None,
) -> ParameterSet:
    """
    Resolve the parameter set of a job request against its application and execution
    system.

    This is run once, when the job is submitted. The request's parameter set is
    updated in place and returned.

    Parameters
    ----------
    request : ParameterSet
        The parameter set given in the job request.
    app : ParameterSet, optional
        (Default: None) The parameter set defined by the application.
    system_env : list[EnvVar], optional
        (Default: None) The environment variables defined by the execution system.
    scheduler_profile : str, optional
        (Default: None) The scheduler profile named by the execution system.
    config : RuntimeConfig, optional
        (Default: None) The runtime configuration. Defaults to the default
        configuration.

    Returns
    -------
    ParameterSet
        The resolved parameter set, which is `request`.

    Raises
    ------
    ResolutionError
        If any part of the parameter set cannot be resolved.
    """

    config = RuntimeConfig() if config is None else config
    app = ParameterSet() if app is None else app

    merge_arg_spec_list(request.app_args, app.app_args, ArgKind.APP_ARGS, config)
    merge_arg_spec_list(
        request.container_args, app.container_args, ArgKind.CONTAINER_ARGS, config
    )
    merge_arg_spec_list(
        request.scheduler_options, app.scheduler_options, ArgKind.SCHEDULER_OPTIONS, config
    )
    merge_scheduler_profile(request.scheduler_options, scheduler_profile, config)
    merge_env_variables(request.env_variables, app.env_variables, system_env, config)
    merge_archive_filters(request.archive_filter, app.archive_filter)

    logger.info(
        f"Resolved parameter set with {len(request.app_args)} application argument(s), "
        f"{len(request.scheduler_options)} scheduler option(s) and "
        f"{len(request.env_variables)} environment variable(s)."
    )
    return request
