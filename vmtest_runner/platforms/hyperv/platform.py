"""Hyper-V platform implementation."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from vmtest_runner.errors import PlatformError, RemoteExecutionTimeout
from vmtest_runner.models.machine import Deployment, MachineDescriptor
from vmtest_runner.platforms.base import Platform
from vmtest_runner.platforms.hyperv.config import HyperVConfig
from vmtest_runner.transport import run_process

log = logging.getLogger(__name__)

IPV4_PATTERN = r"^\d{1,3}(\.\d{1,3}){3}$"


def quote(value: str) -> str:
    """Quote a value as a PowerShell single-quoted string."""
    return "'" + value.replace("'", "''") + "'"


@dataclass(frozen=True, kw_only=True)
class HyperVPlatform(Platform):
    """Hyper-V platform driven through PowerShell cmdlets."""

    name: str = "hyperv"
    config: HyperVConfig

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: HyperVConfig
    ) -> AsyncGenerator["HyperVPlatform", None]:
        """Create platform from configuration."""
        yield cls(config=config)

    @property
    def supports_checkpoints(self) -> bool:
        """Hyper-V machines can be checkpointed."""
        return True

    async def run_powershell(self, script: str) -> str:
        """Run a PowerShell script and return its standard output.

        Raises:
            PlatformError: If the script fails or exceeds the command timeout

        """
        args = [self.config.powershell, "-NoProfile", "-NonInteractive", "-Command"]
        try:
            result = await run_process(
                [*args, script], timeout=self.config.command_timeout
            )
        except RemoteExecutionTimeout as exc:
            raise PlatformError(f"PowerShell timed out: {exc}") from exc

        if result.returncode != 0:
            raise PlatformError(f"PowerShell failed: {result.stderr.strip()}")

        return result.stdout.strip()

    def _vm_args(self, machine: MachineDescriptor) -> str:
        return f"-Name {quote(machine.host_ref)} -ComputerName {quote(self.config.host)}"

    async def resolve_location(self) -> str:
        """Return the Hyper-V host name."""
        return self.config.host

    async def provision(self, location: str) -> Deployment:
        """Create and start one VM per role.

        If a role fails, the VMs created so far and the failed one are removed
        before the error is raised.
        """
        machines: list[MachineDescriptor] = []
        for role in self.config.roles:
            machine = MachineDescriptor(
                role_name=role,
                port=self.config.ssh_port,
                host_ref=f"{self.config.vm_prefix}-{role}",
            )
            try:
                await self._create_vm(machine, location)
            except PlatformError:
                log.error("Creating %s failed, removing created VMs", machine.host_ref)
                for created in [*machines, machine]:
                    try:
                        await self._remove_vm(created)
                    except PlatformError as exc:
                        log.error("Failed to remove %s: %s", created.host_ref, exc)
                raise
            machines.append(machine)

        return Deployment(
            deployment_id=self.config.vm_prefix,
            location=location,
            machines=tuple(machines),
        )

    async def _create_vm(self, machine: MachineDescriptor, location: str) -> None:
        vm_name = quote(machine.host_ref)
        vhd_path = quote(self._vhd_path(machine))
        host = quote(location)
        log.info("Creating VM %s on %s", machine.host_ref, location)
        await self.run_powershell(
            f"New-VHD -Path {vhd_path} "
            f"-ParentPath {quote(self.config.parent_vhd)} "
            f"-Differencing -ComputerName {host} | Out-Null; "
            f"New-VM -Name {vm_name} -ComputerName {host} "
            f"-MemoryStartupBytes {self.config.memory_mb}MB "
            f"-Generation {self.config.generation} "
            f"-VHDPath {vhd_path} "
            f"-SwitchName {quote(self.config.switch_name)} | Out-Null; "
            f"Start-VM -Name {vm_name} -ComputerName {host}"
        )

    def _vhd_path(self, machine: MachineDescriptor) -> str:
        return f"{self.config.vhd_dir}\\{machine.host_ref}.vhdx"

    async def _remove_vm(self, machine: MachineDescriptor) -> None:
        log.info("Removing VM %s", machine.host_ref)
        await self.run_powershell(
            f"Stop-VM {self._vm_args(machine)} -TurnOff -Force "
            "-ErrorAction SilentlyContinue; "
            f"Remove-VM {self._vm_args(machine)} -Force "
            "-ErrorAction SilentlyContinue; "
            f"Invoke-Command -ComputerName {quote(self.config.host)} "
            f"-ScriptBlock {{ Remove-Item -Path {quote(self._vhd_path(machine))} "
            "-Force -ErrorAction SilentlyContinue }"
        )

    async def deprovision(self, deployment: Deployment) -> None:
        """Turn off and remove every VM of the deployment with its disk."""
        for machine in deployment.machines:
            await self._remove_vm(machine)

    async def lookup_address(self, machine: MachineDescriptor) -> str | None:
        """Return the first IPv4 address reported by the VM network adapter."""
        output = await self.run_powershell(
            f"(Get-VMNetworkAdapter -VMName {quote(machine.host_ref)} "
            f"-ComputerName {quote(self.config.host)}).IPAddresses "
            f"| Where-Object {{ $_ -match '{IPV4_PATTERN}' }} "
            "| Select-Object -First 1"
        )
        return output or None

    async def stop_machine(self, machine: MachineDescriptor) -> None:
        """Shut down a VM."""
        await self.run_powershell(f"Stop-VM {self._vm_args(machine)} -Force")

    async def start_machine(self, machine: MachineDescriptor) -> None:
        """Start a VM."""
        await self.run_powershell(f"Start-VM {self._vm_args(machine)}")

    async def create_checkpoint(self, machine: MachineDescriptor, name: str) -> None:
        """Checkpoint a VM under ``name``."""
        log.info("Creating checkpoint %s of %s", name, machine.host_ref)
        await self.run_powershell(
            f"Checkpoint-VM {self._vm_args(machine)} -SnapshotName {quote(name)}"
        )

    async def restore_checkpoint(self, machine: MachineDescriptor, name: str) -> None:
        """Restore a VM to the checkpoint ``name``."""
        log.info("Restoring checkpoint %s of %s", name, machine.host_ref)
        await self.run_powershell(
            f"Restore-VMSnapshot -VMName {quote(machine.host_ref)} "
            f"-ComputerName {quote(self.config.host)} "
            f"-Name {quote(name)} -Confirm:$false"
        )
