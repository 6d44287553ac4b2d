"""Command execution and file transfer for test machines."""

import asyncio
import logging
import os
import shlex
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import SecretStr

from vmtest_runner.config import RunnerConfig
from vmtest_runner.errors import (
    PrivilegeEscalationWarning,
    RemoteCommandError,
    RemoteExecutionTimeout,
    TransferError,
)
from vmtest_runner.models.machine import MachineDescriptor

log = logging.getLogger(__name__)

ROOT_USER = "root"


def home_directory(username: str) -> str:
    """Absolute home directory of a login user on a Linux machine."""
    if username == ROOT_USER:
        return "/root"
    return f"/home/{username}"


@dataclass(frozen=True, kw_only=True)
class CommandResult:
    """Exit code and output of a finished command."""

    returncode: int
    stdout: str
    stderr: str


async def run_process(
    args: Sequence[str],
    *,
    timeout: float | None = None,
    env: dict[str, str] | None = None,
) -> CommandResult:
    """Run a process to completion, killing it if it exceeds ``timeout``.

    Raises:
        RemoteExecutionTimeout: If the process is still running after timeout

    """
    process = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=env,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except TimeoutError as exc:
        process.kill()
        await process.wait()
        raise RemoteExecutionTimeout(
            f"Command did not finish within {timeout} seconds: {args[0]}"
        ) from exc

    return CommandResult(
        returncode=process.returncode or 0,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )


def sudo(password: str, command: str) -> str:
    """Wrap a shell command so it runs under a privileged shell."""
    return f"echo {shlex.quote(password)} | sudo -S -s eval {shlex.quote(command)}"


@dataclass(frozen=True, kw_only=True)
class RemoteShell:
    """Runs commands and copies files over the system ssh and scp clients.

    Password authentication goes through ``sshpass``; with a key file the
    password is only used for sudo.
    """

    username: str
    password: SecretStr = field(repr=False)
    key_file: Path | None = None
    connect_timeout: int = 30

    @classmethod
    def from_config(cls, config: RunnerConfig) -> "RemoteShell":
        """Create a shell using the runner credentials."""
        return cls(
            username=config.username,
            password=config.password,
            key_file=config.key_file,
        )

    def _prefix(self) -> list[str]:
        return [] if self.key_file else ["sshpass", "-e"]

    def _env(self) -> dict[str, str]:
        return {**os.environ, "SSHPASS": self.password.get_secret_value()}

    def _options(self) -> list[str]:
        options = [
            "-o",
            "StrictHostKeyChecking=no",
            "-o",
            "UserKnownHostsFile=/dev/null",
            "-o",
            f"ConnectTimeout={self.connect_timeout}",
        ]
        if self.key_file:
            options += ["-i", str(self.key_file)]
        return options

    def _target(self, machine: MachineDescriptor, user: str | None) -> str:
        if not machine.address:
            raise RemoteCommandError(f"Machine {machine.role_name} has no address")
        return f"{user or self.username}@{machine.address}"

    async def run(
        self,
        machine: MachineDescriptor,
        command: str,
        *,
        timeout: float | None = None,
        user: str | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run a shell command on a machine.

        Raises:
            RemoteExecutionTimeout: If the command exceeds ``timeout``
            RemoteCommandError: If ``check`` is set and the command fails

        """
        args = [
            *self._prefix(),
            "ssh",
            *self._options(),
            "-p",
            str(machine.port),
            self._target(machine, user),
            command,
        ]
        result = await run_process(args, timeout=timeout, env=self._env())
        if check and result.returncode != 0:
            raise RemoteCommandError(
                f"Command failed on {machine.role_name} "
                f"(exit {result.returncode}): {result.stderr.strip()}"
            )
        return result

    async def run_privileged(
        self,
        machine: MachineDescriptor,
        command: str,
        *,
        timeout: float | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run a command through sudo from the home directory."""
        return await self.run(
            machine,
            sudo(self.password.get_secret_value(), command),
            timeout=timeout,
            check=check,
        )

    async def upload(
        self,
        machine: MachineDescriptor,
        paths: Sequence[Path],
        remote_dir: str = ".",
        user: str | None = None,
    ) -> None:
        """Copy local files into ``remote_dir`` on a machine."""
        if not paths:
            return
        target = f"{self._target(machine, user)}:{remote_dir}"
        args = [
            *self._prefix(),
            "scp",
            *self._options(),
            "-P",
            str(machine.port),
            *(str(path) for path in paths),
            target,
        ]
        result = await run_process(args, env=self._env())
        if result.returncode != 0:
            raise TransferError(
                f"Upload to {machine.role_name} failed: {result.stderr.strip()}"
            )

    async def download(
        self,
        machine: MachineDescriptor,
        remote_path: str,
        local_dir: Path,
        user: str = ROOT_USER,
    ) -> Path:
        """Copy a remote file into ``local_dir`` and return its local path."""
        local_dir.mkdir(parents=True, exist_ok=True)
        destination = local_dir / Path(remote_path).name
        args = [
            *self._prefix(),
            "scp",
            *self._options(),
            "-P",
            str(machine.port),
            f"{self._target(machine, user)}:{remote_path}",
            str(destination),
        ]
        result = await run_process(args, env=self._env())
        if result.returncode != 0:
            raise TransferError(
                f"Download of {remote_path} from {machine.role_name} failed: "
                f"{result.stderr.strip()}"
            )
        return destination

    async def enable_root(self, machine: MachineDescriptor) -> None:
        """Allow root logins with the runner password.

        Raises:
            PrivilegeEscalationWarning: If the machine rejects the change

        """
        password = self.password.get_secret_value()
        command = (
            f"echo root:{shlex.quote(password)} | chpasswd && "
            "sed -i 's/^#\\?PermitRootLogin.*/PermitRootLogin yes/' "
            "/etc/ssh/sshd_config && "
            "(systemctl restart sshd || systemctl restart ssh || service sshd restart)"
        )
        try:
            await self.run_privileged(machine, command, timeout=self.connect_timeout * 4)
        except (RemoteCommandError, RemoteExecutionTimeout) as exc:
            raise PrivilegeEscalationWarning(
                f"Could not enable root on {machine.role_name}: {exc}"
            ) from exc
