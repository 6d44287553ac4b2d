"""Models for test execution results."""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum


class Verdict(StrEnum):
    """Canonical outcome of a test run."""

    PASSED = "Passed"
    FAILED = "Failed"
    ABORTED = "Aborted"
    UNKNOWN = "Unknown"


# Higher wins when several script verdicts are combined.
VERDICT_SEVERITY: dict[Verdict, int] = {
    Verdict.PASSED: 0,
    Verdict.UNKNOWN: 1,
    Verdict.FAILED: 2,
    Verdict.ABORTED: 3,
}


def aggregate_verdicts(verdicts: Iterable[Verdict]) -> Verdict:
    """Combine script verdicts into the verdict of the run.

    The most severe verdict wins, so an Unknown is never reported as Passed.
    No verdicts at all yields Unknown.
    """
    return max(verdicts, key=VERDICT_SEVERITY.__getitem__, default=Verdict.UNKNOWN)


@dataclass(frozen=True, kw_only=True)
class ScriptOutcome:
    """Result of one script execution.

    ``summary`` is the payload handed back to callers: the completion token
    for shell and host-local scripts, the full summary log text for
    interpreted scripts.
    """

    verdict: Verdict
    summary: str = ""
    token: str | None = None


@dataclass(frozen=True, kw_only=True)
class TestResultRecord:
    """Final result of a test run."""

    __test__ = False

    name: str
    verdict: Verdict
    summary: str = ""
    duration: float = 0.0
    message: str | None = None
