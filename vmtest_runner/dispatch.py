"""Selection and execution of test scripts by script type."""

import logging
import shlex
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from vmtest_runner.collector import translate_verdict
from vmtest_runner.constants import CONSTANTS_FILE, render_constants
from vmtest_runner.context import RunContext
from vmtest_runner.errors import RemoteCommandError
from vmtest_runner.models.result import ScriptOutcome
from vmtest_runner.scripts import ScriptKind, classify_script, summary_log_name
from vmtest_runner.transport import RemoteShell, run_process

log = logging.getLogger(__name__)

RUNTIME_LOG = "Runtime.log"


def serialize_host_parameters(parameters: Mapping[str, str]) -> str:
    """Serialize parameters for host-local scripts as ``k=v;k2=v2``."""
    return ";".join(f"{key}={value}" for key, value in parameters.items())


def shell_command(script: str, test_name: str) -> str:
    """Command running a shell script with output captured in the summary log."""
    return (
        "export HOME=`pwd`; "
        f"bash ./{shlex.quote(script)} > {shlex.quote(summary_log_name(test_name))} 2>&1"
    )


def interpreted_command(script: str, test_name: str) -> str:
    """Command running a Python script and keeping its runtime log as summary."""
    return (
        "export HOME=`pwd`; "
        f"python3 ./{shlex.quote(script)}; "
        f"mv -f {RUNTIME_LOG} {shlex.quote(summary_log_name(test_name))}"
    )


@dataclass(frozen=True, kw_only=True)
class ScriptDispatcher:
    """Uploads the constants payload and runs a test script."""

    shell: RemoteShell
    scripts_dir: Path
    work_dir: Path
    powershell: str = "pwsh"

    def write_constants(self, ctx: RunContext) -> Path:
        """Write the constants payload for the run to the work directory."""
        self.work_dir.mkdir(parents=True, exist_ok=True)
        path = self.work_dir / CONSTANTS_FILE
        path.write_text(render_constants(ctx.parameters))
        return path

    async def upload_constants(self, ctx: RunContext) -> None:
        """Upload the constants payload to the home directory of every machine."""
        path = self.write_constants(ctx)
        for machine in ctx.machines:
            log.info("Uploading %s to %s", CONSTANTS_FILE, machine.role_name)
            await self.shell.upload(machine, [path])

    async def dispatch(
        self, script: str, test_name: str, ctx: RunContext
    ) -> ScriptOutcome | None:
        """Run a test script with the strategy its suffix selects.

        Returns:
            The outcome for host-local scripts; None for remote scripts,
            whose outcome must be collected from the machine

        Raises:
            ConfigurationError: If the script type is not supported
            RemoteExecutionTimeout: If the script exceeds ``ctx.timeout``

        """
        kind = classify_script(script)
        await self.upload_constants(ctx)

        log.info("Running %s as %s (timeout=%ss)", script, kind, ctx.timeout)
        match kind:
            case ScriptKind.HOST_LOCAL:
                return await self.run_host_local(script, ctx)
            case ScriptKind.REMOTE_SHELL:
                await self.run_remote(script, shell_command(script, test_name), ctx)
            case ScriptKind.REMOTE_INTERPRETED:
                await self.run_remote(
                    script, interpreted_command(script, test_name), ctx
                )
        log.info("Finished running %s", script)
        return None

    async def run_remote(self, script: str, command: str, ctx: RunContext) -> None:
        """Upload a script to the primary machine and run it as root."""
        machine = ctx.primary
        await self.shell.upload(machine, [self.scripts_dir / script])
        result = await self.shell.run_privileged(
            machine, command, timeout=ctx.timeout, check=False
        )
        if result.returncode != 0:
            # The completion token decides the verdict; a non-zero exit is not fatal.
            log.warning(
                "Script %s exited with code %d on %s",
                script,
                result.returncode,
                machine.role_name,
            )

    async def run_host_local(self, script: str, ctx: RunContext) -> ScriptOutcome:
        """Run a PowerShell script on this host and use its last output line."""
        path = (self.scripts_dir / script).resolve()
        result = await run_process(
            [
                self.powershell,
                "-NoProfile",
                "-NonInteractive",
                "-File",
                str(path),
                "-TestParams",
                serialize_host_parameters(ctx.parameters),
            ],
            timeout=ctx.timeout,
        )
        if result.returncode != 0:
            raise RemoteCommandError(
                f"Host script {script} failed (exit {result.returncode}): "
                f"{result.stderr.strip()}"
            )

        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        token = lines[-1] if lines else ""
        return ScriptOutcome(verdict=translate_verdict(token), summary=token, token=token)
