"""
hpcjobs.resolution
==================

-------------------------------------------------------------------------------------------
The `hpcjobs.resolution` package resolves the parameters of a job at submission time.
Command line arguments, scheduler options, environment variables and archive filters
can be defined by the execution system, the application and the job request; these
layers are merged into a single authoritative parameter set that is stored with the job
and never changes afterwards.

-------------------------------------------------------------------------------------------
Modules
=======

[`argspecs`][hpcjobs.resolution.argspecs]:
    Merges application and request argument lists, enforcing input modes and the
    immutability of FIXED arguments.

[`envvars`][hpcjobs.resolution.envvars]:
    Merges system, application and request environment variables.

[`filters`][hpcjobs.resolution.filters]:
    Merges application archive filters into a request's archive filter.

[`parameters`][hpcjobs.resolution.parameters]:
    Defines the parameter set of a job and resolves all of its parts in one call.

[`slurm`][hpcjobs.resolution.slurm]:
    Parses resolved scheduler options into Slurm batch directives.

[`types`][hpcjobs.resolution.types]:
    Defines the argument, environment variable and archive filter types.

-------------------------------------------------------------------------------------------
"""
