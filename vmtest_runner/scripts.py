"""Classification of test scripts by file type."""

from collections.abc import Mapping
from enum import StrEnum
from pathlib import PurePath

from vmtest_runner.errors import ConfigurationError


class ScriptKind(StrEnum):
    """Execution strategy of a test script."""

    HOST_LOCAL = "host-local"
    REMOTE_SHELL = "remote-shell"
    REMOTE_INTERPRETED = "remote-interpreted"


SUFFIX_TO_KIND: Mapping[str, ScriptKind] = {
    ".ps1": ScriptKind.HOST_LOCAL,
    ".sh": ScriptKind.REMOTE_SHELL,
    ".py": ScriptKind.REMOTE_INTERPRETED,
}


def classify_script(script: str) -> ScriptKind:
    """Return the execution strategy for a script from its suffix.

    Raises:
        ConfigurationError: If the suffix is not supported

    """
    suffix = PurePath(script).suffix.lower()
    if (kind := SUFFIX_TO_KIND.get(suffix)) is None:
        raise ConfigurationError(
            f"Unsupported script type {suffix or '(none)'!r} for {script}; "
            f"expected one of {sorted(SUFFIX_TO_KIND)}"
        )
    return kind


def summary_log_name(test_name: str) -> str:
    """Name of the per-test summary log on the machine."""
    return f"{test_name}_summary.log"
