"""Abstract base class for deployment platforms."""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from vmtest_runner.models.machine import Deployment, MachineDescriptor

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class Platform(ABC):
    """Abstract base for the backends that host test machines.

    Provisioning, power and checkpoint operations are delegated to the
    backend; the runner only decides when to call them.
    """

    name: str

    @property
    def supports_checkpoints(self) -> bool:
        """Whether this platform can create and restore checkpoints."""
        return False

    @abstractmethod
    async def resolve_location(self) -> str:
        """Return the region or host that machines are deployed to."""

    @abstractmethod
    async def provision(self, location: str) -> Deployment:
        """Provision new machines.

        Args:
            location: Region or host returned by resolve_location

        Returns:
            Deployment handle listing the new machines

        """

    @abstractmethod
    async def deprovision(self, deployment: Deployment) -> None:
        """Remove every resource created by ``provision``."""

    @abstractmethod
    async def lookup_address(self, machine: MachineDescriptor) -> str | None:
        """Return the current network address of a machine, if known."""

    @abstractmethod
    async def stop_machine(self, machine: MachineDescriptor) -> None:
        """Power off a machine."""

    @abstractmethod
    async def start_machine(self, machine: MachineDescriptor) -> None:
        """Power on a machine."""

    async def create_checkpoint(self, machine: MachineDescriptor, name: str) -> None:
        """Save the state of a stopped machine under ``name``."""
        raise NotImplementedError(f"{self.name} does not support checkpoints")

    async def restore_checkpoint(self, machine: MachineDescriptor, name: str) -> None:
        """Restore a stopped machine to the checkpoint ``name``."""
        raise NotImplementedError(f"{self.name} does not support checkpoints")

    @asynccontextmanager
    async def machine_stopped(
        self, machine: MachineDescriptor
    ) -> AsyncGenerator[MachineDescriptor, None]:
        """Keep a machine powered off for the duration of the block.

        The machine is started again even if the block raises.
        """
        log.info("Stopping machine %s", machine.role_name)
        await self.stop_machine(machine)
        try:
            yield machine
        finally:
            log.info("Starting machine %s", machine.role_name)
            await self.start_machine(machine)
