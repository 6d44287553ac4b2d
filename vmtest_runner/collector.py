"""Collection of result artifacts and translation into verdicts."""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from vmtest_runner.errors import TransferError
from vmtest_runner.models.machine import MachineDescriptor
from vmtest_runner.models.result import ScriptOutcome, Verdict
from vmtest_runner.scripts import ScriptKind, summary_log_name
from vmtest_runner.transport import RemoteShell

log = logging.getLogger(__name__)

STATE_FILE = "state.txt"
EXECUTION_LOG = "TestExecution.log"
SUMMARY_BANNER = "TEST SCRIPT SUMMARY ~~~~~~~~~~~~~~~"
SUMMARY_END_BANNER = "END OF TEST SCRIPT SUMMARY ~~~~~~~~~~~~~~~"

COMPLETION_TOKENS: Mapping[str, Verdict] = {
    "TestAborted": Verdict.ABORTED,
    "TestFailed": Verdict.FAILED,
    "TestCompleted": Verdict.PASSED,
}


def translate_verdict(token: str | None) -> Verdict:
    """Map a completion token to a verdict; anything unrecognised is Unknown."""
    if token is None:
        return Verdict.UNKNOWN
    return COMPLETION_TOKENS.get(token.strip(), Verdict.UNKNOWN)


def artifacts_for(kind: ScriptKind, test_name: str) -> Sequence[str]:
    """Remote files to download for a script type."""
    summary = summary_log_name(test_name)
    if kind is ScriptKind.REMOTE_INTERPRETED:
        return (STATE_FILE, summary)
    return (STATE_FILE, summary, EXECUTION_LOG)


def echo_summary(test_name: str, content: str) -> None:
    """Log a script summary between banner lines."""
    log.info("%s (%s)", SUMMARY_BANNER, test_name)
    for line in content.splitlines():
        log.info("%s", line)
    log.info("%s (%s)", SUMMARY_END_BANNER, test_name)


@dataclass(frozen=True, kw_only=True)
class LogCollector:
    """Downloads result artifacts from a machine and derives the verdict."""

    shell: RemoteShell
    log_dir: Path
    remote_home: str

    async def download_artifacts(
        self, machine: MachineDescriptor, kind: ScriptKind, test_name: str
    ) -> Mapping[str, Path]:
        """Download the artifacts of a script run as root.

        Scripts write their artifacts into the login user's home, so files
        are fetched from ``remote_home`` and keyed by name. Missing artifacts
        are logged and left out of the result.
        """
        destination = self.log_dir / test_name
        downloaded: dict[str, Path] = {}
        for name in artifacts_for(kind, test_name):
            remote_path = str(PurePosixPath(self.remote_home, name))
            try:
                downloaded[name] = await self.shell.download(
                    machine, remote_path, destination
                )
            except TransferError as exc:
                log.warning("Artifact %s not collected: %s", remote_path, exc)
        return downloaded

    async def collect(
        self, machine: MachineDescriptor, kind: ScriptKind, test_name: str
    ) -> ScriptOutcome:
        """Collect artifacts for a remote script and build its outcome.

        Shell scripts report the completion token as payload; interpreted
        scripts report the whole summary log.
        """
        log.info("Collecting logs for %s from %s", test_name, machine.role_name)
        files = await self.download_artifacts(machine, kind, test_name)

        token: str | None = None
        if (state_path := files.get(STATE_FILE)) is not None:
            token = state_path.read_text().strip()

        summary = ""
        if (summary_path := files.get(summary_log_name(test_name))) is not None:
            summary = summary_path.read_text()
        echo_summary(test_name, summary)

        verdict = translate_verdict(token)
        if token is None:
            log.error("No completion token collected for %s", test_name)
        elif verdict is Verdict.UNKNOWN:
            log.error("Unrecognized completion token %r for %s", token, test_name)

        log.info("Logs collected for %s: verdict=%s", test_name, verdict)
        if kind is ScriptKind.REMOTE_INTERPRETED:
            return ScriptOutcome(verdict=verdict, summary=summary, token=token)
        return ScriptOutcome(verdict=verdict, summary=token or "", token=token)
