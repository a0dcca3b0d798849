"""
Following the execution of jobs on remote systems.

The modules of this subpackage poll the status of jobs on remote HPC and cloud systems
over SSH, deciding how long to wait between polls, reacting to commands sent to the
jobs while they are monitored, and recording the outcome of each job's remote
execution exactly once.
"""
