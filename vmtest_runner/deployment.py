"""Decides whether to provision, restore or reuse machines for a run."""

import logging
from dataclasses import dataclass
from enum import StrEnum

from vmtest_runner.context import RunContext
from vmtest_runner.errors import PrivilegeEscalationWarning, ProvisioningError
from vmtest_runner.models.machine import Checkpoint
from vmtest_runner.platforms.base import Platform
from vmtest_runner.readiness import ReachabilityCheck, is_port_open, wait_for_readiness
from vmtest_runner.transport import RemoteShell

log = logging.getLogger(__name__)

WIPE_HOME_COMMAND = "rm -rf ~/*"


class DeploymentPath(StrEnum):
    """How machines are obtained for a run."""

    FRESH = "fresh"
    RESTORE = "restore"
    REUSE = "reuse"


@dataclass(frozen=True, kw_only=True)
class DeploymentController:
    """Prepares the machine set of a run and tears it down again."""

    platform: Platform
    shell: RemoteShell
    checkpoint_restore: bool
    checkpoint_name: str
    readiness_timeout: float
    retry_interval: float
    check_reachable: ReachabilityCheck = is_port_open

    def choose_path(self, ctx: RunContext, *, fresh: bool) -> DeploymentPath:
        """Select the deployment path for a run."""
        if fresh or not ctx.machines or ctx.deployment is None:
            return DeploymentPath.FRESH
        if (
            self.checkpoint_restore
            and self.platform.supports_checkpoints
            and ctx.checkpoints
        ):
            return DeploymentPath.RESTORE
        return DeploymentPath.REUSE

    async def prepare(self, ctx: RunContext, *, fresh: bool) -> DeploymentPath:
        """Make ``ctx.machines`` ready for a test.

        Raises:
            ProvisioningError: If new machines cannot be provisioned
            ReadinessTimeoutError: If machines do not become reachable

        """
        path = self.choose_path(ctx, fresh=fresh)
        log.info("Preparing machines: path=%s platform=%s", path, self.platform.name)

        match path:
            case DeploymentPath.FRESH:
                if ctx.deployment is not None:
                    await self.teardown(ctx)
                await self.deploy(ctx)
            case DeploymentPath.RESTORE:
                await self.restore(ctx)
            case DeploymentPath.REUSE:
                await self.wipe_workspace(ctx)

        log.info("Machines prepared: path=%s count=%d", path, len(ctx.machines))
        return path

    async def probe(self, ctx: RunContext) -> None:
        """Wait for every machine to become reachable and record its address."""
        ctx.machines = await wait_for_readiness(
            ctx.machines,
            self.platform.lookup_address,
            self.check_reachable,
            timeout=self.readiness_timeout,
            retry_interval=self.retry_interval,
        )

    async def deploy(self, ctx: RunContext) -> None:
        """Provision new machines, enable root and checkpoint them."""
        log.info("Provisioning machines in %s", ctx.location)
        try:
            deployment = await self.platform.provision(ctx.location)
        except ProvisioningError:
            raise
        except Exception as exc:
            raise ProvisioningError(f"Provisioning failed: {exc}") from exc

        if not deployment.machines:
            raise ProvisioningError("Provisioning returned no machines")

        ctx.deployment = deployment
        ctx.machines = deployment.machines
        ctx.checkpoints = ()
        ctx.freshly_deployed = True

        if any(machine.address is None for machine in ctx.machines):
            await self.probe(ctx)

        ctx.root_enabled = await self.enable_root(ctx)

        if self.platform.supports_checkpoints:
            for machine in ctx.machines:
                async with self.platform.machine_stopped(machine):
                    await self.platform.create_checkpoint(machine, self.checkpoint_name)
            ctx.checkpoints = tuple(
                Checkpoint(name=self.checkpoint_name, role_name=machine.role_name)
                for machine in ctx.machines
            )
            await self.probe(ctx)

    async def enable_root(self, ctx: RunContext) -> bool:
        """Enable the root account on every machine.

        A machine that refuses is logged and skipped, since some scripts run
        fine without root. Returns True only if every machine succeeded.
        """
        outcomes: list[bool] = []
        for machine in ctx.machines:
            try:
                await self.shell.enable_root(machine)
            except PrivilegeEscalationWarning as exc:
                log.warning("%s", exc)
                outcomes.append(False)
            else:
                outcomes.append(True)
        return all(outcomes)

    async def restore(self, ctx: RunContext) -> None:
        """Restore every machine to its checkpoint and probe addresses again."""
        names = {c.role_name: c.name for c in ctx.checkpoints}
        for machine in ctx.machines:
            name = names.get(machine.role_name, self.checkpoint_name)
            async with self.platform.machine_stopped(machine):
                await self.platform.restore_checkpoint(machine, name)
        ctx.freshly_deployed = False
        await self.probe(ctx)

    async def wipe_workspace(self, ctx: RunContext) -> None:
        """Clear the home directory of every machine from the previous run."""
        for machine in ctx.machines:
            log.info("Cleaning home directory on %s", machine.role_name)
            await self.shell.run(machine, WIPE_HOME_COMMAND)
        ctx.freshly_deployed = False

    async def teardown(self, ctx: RunContext) -> None:
        """Deprovision the run's deployment."""
        if ctx.deployment is None:
            return
        log.info("Deprovisioning %s", ctx.deployment.deployment_id)
        await self.platform.deprovision(ctx.deployment)
        ctx.deployment = None
        ctx.machines = ()
        ctx.checkpoints = ()
        log.info("Deprovisioning complete")
