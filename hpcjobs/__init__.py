"""
High Performance Computing Job Supervision (hpcjobs)
=====================================================

The `hpcjobs` package provides the core machinery for submitting and supervising
computational jobs that execute on remote HPC and cloud systems, whether through plain
SSH processes, batch schedulers or containers.

Key Features
============
- **Layered parameter resolution**: Merge system, application and request definitions
  of command line arguments and environment variables into one authoritative set,
  enforcing override and immutability rules.
- **Remote execution monitoring**: Track a job from queued to terminal state on a
  remote system with a pluggable wait/retry policy, recoverable/fatal failure
  classification and exactly-once recording of the job's outcome.
- **Execution technology probes**: Query remote job status for plain processes,
  Docker containers, Singularity instances and Slurm jobs over SSH.

Subpackages
---------------------------------------------------------------------------------------
- [`resolution`][hpcjobs.resolution]:
Resolves the arguments, scheduler options, environment variables and archive filters
of a job at submission time.

- [`execution`][hpcjobs.execution]:
Monitors jobs running on remote systems and records their outcomes.

"""
