"""
Parses resolved scheduler options into Slurm batch directives.

Users may pass most ``sbatch`` options through a job's scheduler options. The options
that size and place a job (memory, nodes, tasks, partition and run time) are instead
controlled by the job's own settings and are rejected if given as scheduler options.
Options are looked up in a static table mapping every long and short flag to its long
form, and are emitted as ``#SBATCH`` directives in alphabetical order.
"""

import re
from collections.abc import Iterable, Sequence
from typing import Optional

from hpcjobs.errors import OptionParseError, SubsumedOptionError, UnsupportedOptionError
from hpcjobs.resolution.types import ArgSpec
from hpcjobs.utilities.string_validation import is_blank

DIRECTIVE_PREFIX = "#SBATCH "
OPTION_PATTERN = re.compile(r"\s*(--?[^=\s]*)\s*=?\s*(\S*)\s*")
PROFILE_OPTION = "--hpcjobs-profile"
DEFAULT_JOB_NAME = "hpcjob.sh"

SLURM_OPTIONS = {
    "--array": ("-a",),
    "--account": ("-A",),
    "--acctg-freq": (),
    "--extra-node-info": ("-B",),
    "--batch": (),
    "--bb": (),
    "--bbf": (),
    "--begin": ("-b",),
    "--cluster-constraint": (),
    "--clusters": ("-M",),
    "--comment": (),
    "--constraint": ("-C",),
    "--contiguous": (),
    "--core-spec": ("-S",),
    "--cores-per-socket": (),
    "--cpu-freq": (),
    "--cpus-per-gpu": (),
    "--cpus-per-task": ("-c",),
    "--deadline": (),
    "--delay-boot": (),
    "--dependency": ("-d",),
    "--distribution": ("-m",),
    "--error": ("-e",),
    "--exclude": ("-x",),
    "--exclusive": (),
    "--export": (),
    "--export-file": (),
    "--get-user-env": (),
    "--gid": (),
    "--gpus": ("-G",),
    "--gpu-bind": (),
    "--gpu-freq": (),
    "--gpus-per-node": (),
    "--gpus-per-socket": (),
    "--gpus-per-task": (),
    "--gres": (),
    "--gres-flags": (),
    "--hint": (),
    "--hold": ("-H",),
    "--ignore-pbs": (),
    "--input": ("-i",),
    "--job-name": ("-J",),
    "--kill-on-invalid-dep": (),
    "--licenses": ("-L",),
    "--mail-type": (),
    "--mail-user": (),
    "--mcs-label": (),
    "--mem-per-cpu": (),
    "--mem-per-gpu": (),
    "--mem-bind": (),
    "--mincpus": (),
    "--network": (),
    "--nice": (),
    "--nodefile": ("-F",),
    "--nodelist": ("-w",),
    "--no-kill": ("-k",),
    "--no-requeue": (),
    "--ntasks-per-core": (),
    "--ntasks-per-gpu": (),
    "--ntasks-per-node": (),
    "--ntasks-per-socket": (),
    "--overcommit": ("-O",),
    "--oversubscribe": ("-s",),
    "--output": ("-o",),
    "--open-mode": (),
    "--power": (),
    "--priority": (),
    "--profile": (),
    "--propagate": (),
    "--qos": ("-q",),
    "--reboot": (),
    "--requeue": (),
    "--reservation": (),
    "--signal": (),
    "--sockets-per-node": (),
    "--spread-job": (),
    "--switches": (),
    "--thread-spec": (),
    "--threads-per-core": (),
    "--time-min": (),
    "--tmp": (),
    "--use-min-nodes": (),
    "--verbose": ("-v",),
    "--wait-all-nodes": (),
    "--wckey": (),
    PROFILE_OPTION: (),
}
"""The supported sbatch options, mapped to their short aliases."""

FLAG_OPTIONS = frozenset(
    {"--contiguous", "--ignore-pbs", "--no-requeue", "--overcommit", "--reboot",
     "--requeue", "--spread-job", "--use-min-nodes", "--verbose", "--hold"}
)
"""Supported options that never take a value."""

SUBSUMED_OPTIONS = {
    "--mem": "memory_mb",
    "--nodes": "node_count",
    "-N": "node_count",
    "--ntasks": "total_tasks",
    "-n": "total_tasks",
    "--partition": "partition",
    "-p": "partition",
    "--time": "max_minutes",
    "-t": "max_minutes",
}
"""Options set from the job's own settings, mapped to the setting that controls them."""

_LONG_FORMS = {
    flag: long_option
    for long_option, aliases in SLURM_OPTIONS.items()
    for flag in (long_option, *aliases)
}


def long_form(option: str) -> Optional[str]:
    """Return the long form of a supported option, or ``None`` if it isn't supported."""

    return _LONG_FORMS.get(option)


def parse_option(text: str) -> tuple[str, str]:
    """Split the text of a scheduler option into the option and its value.

    The value may be separated from the option by whitespace or ``'='``, and is the
    empty string if absent.

    Raises
    ------
    OptionParseError
        If `text` is not of the form ``-o[ value]`` or ``--option[=value]``.
    """

    match = OPTION_PATTERN.fullmatch(text or "")
    if match is None or match.group(1) in ("-", "--"):
        raise OptionParseError.from_key("SCHEDULER_OPTION_PARSE", text)

    return match.group(1), match.group(2)


class SlurmOptions:
    """The sbatch options of a Slurm job.

    Parameters
    ----------
    skip_options : Iterable[str], optional
        (Default: ()) Long-form options that are not emitted as directives when a
        scheduler profile is selected, e.g. because the target system's Slurm
        configuration rejects them.
    """

    def __init__(self, skip_options: Iterable[str] = ()):
        self._directives = {}
        self._skip_options = frozenset(skip_options)

    @classmethod
    def from_arg_specs(
        cls, scheduler_options: Sequence[ArgSpec], skip_options: Iterable[str] = ()
    ) -> "SlurmOptions":
        """Create Slurm options from a job's resolved scheduler options."""

        options = cls(skip_options)
        for spec in scheduler_options:
            option, value = parse_option(spec.arg)
            options.assign(option, value)

        return options

    @property
    def profile(self) -> Optional[str]:
        """(Read-only) The selected scheduler profile, or ``None`` if there isn't one."""

        return self._directives.get(PROFILE_OPTION) or None

    def get(self, option: str) -> Optional[str]:
        """Get the value of a directive, given in its long or short form."""

        return self._directives.get(long_form(option) or option)

    def assign(self, option: str, value: str = "") -> None:
        """
        Set a user-supplied option.

        Parameters
        ----------
        option : str
            The option, in long or short form.
        value : str, optional
            (Default: '') The value of the option.

        Raises
        ------
        SubsumedOptionError
            If the option is set from the job's own settings.
        UnsupportedOptionError
            If the option isn't supported.
        OptionParseError
            If the option requires a value and none is given.
        """

        if option in SUBSUMED_OPTIONS:
            raise SubsumedOptionError.from_key(
                "SCHEDULER_OPTION_SUBSUMED", option, SUBSUMED_OPTIONS[option]
            )

        name = long_form(option)
        if name is None:
            raise UnsupportedOptionError.from_key(
                "SCHEDULER_OPTION_UNSUPPORTED", option, "slurm"
            )

        if name in FLAG_OPTIONS:
            value = ""
        elif name == PROFILE_OPTION and is_blank(value):
            raise OptionParseError.from_key("SCHEDULER_OPTION_MISSING_VALUE", option)
        elif name == "--job-name":
            # Some sites reject colons in job names.
            value = value.replace(":", "-")

        self._directives[name] = value

    def set_job_options(
        self,
        node_count: int,
        total_tasks: int,
        max_minutes: int,
        memory_mb: int,
        partition: str,
    ) -> None:
        """Set the options controlled by the job's own settings.

        A job name is also assigned if the user has not chosen one.
        """

        self._directives["--nodes"] = str(node_count)
        self._directives["--ntasks"] = str(total_tasks)
        self._directives["--time"] = str(max_minutes)
        self._directives["--mem"] = f"{memory_mb}M"
        self._directives["--partition"] = partition
        if is_blank(self._directives.get("--job-name")):
            self._directives["--job-name"] = DEFAULT_JOB_NAME

    def _skip(self, option: str) -> bool:
        return self.profile is not None and option in self._skip_options

    def directives(self) -> list[str]:
        """Return the ``#SBATCH`` directive lines in alphabetical order of option.

        The profile option is not passed to Slurm, and nor are options on the skip list
        when a profile is selected.
        """

        lines = []
        for option in sorted(self._directives):
            if option == PROFILE_OPTION or self._skip(option):
                continue

            value = self._directives[option]
            lines.append(DIRECTIVE_PREFIX + option + (f" {value}" if value else ""))

        return lines

    def batch_directives(self) -> str:
        """Return the directives as a block of text for a batch script."""

        lines = "".join(line + "\n" for line in self.directives())
        return "# Slurm directives.\n" + lines + "\n"
