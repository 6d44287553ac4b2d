"""Azure platform implementation."""

import asyncio
import logging
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import aiohttp

from vmtest_runner.errors import PlatformError, ProvisioningError
from vmtest_runner.models.machine import Deployment, MachineDescriptor
from vmtest_runner.platforms.azure.config import AzureConfig
from vmtest_runner.platforms.azure.models import (
    ProvisioningState,
    PublicIPAddress,
    TemplateDeployment,
)
from vmtest_runner.platforms.base import Platform

log = logging.getLogger(__name__)

RESOURCES_API_VERSION = "2021-04-01"
NETWORK_API_VERSION = "2023-09-01"
COMPUTE_API_VERSION = "2024-03-01"

FAILED_STATES: frozenset[ProvisioningState] = frozenset(["Failed", "Canceled"])


@dataclass(frozen=True, kw_only=True)
class AzurePlatform(Platform):
    """Azure Resource Manager platform.

    Each deployment lives in its own resource group, so deprovisioning
    deletes the whole group.
    """

    name: str = "azure"
    config: AzureConfig
    session: aiohttp.ClientSession = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: AzureConfig
    ) -> AsyncGenerator["AzurePlatform", None]:
        """Create platform with managed session lifecycle."""
        headers = {
            "Authorization": f"Bearer {config.token.get_secret_value()}",
            "Content-Type": "application/json",
        }
        async with aiohttp.ClientSession(
            base_url=config.api_base_url,
            headers=headers,
        ) as session:
            yield cls(config=config, session=session)

    def _group_url(self, resource_group: str) -> str:
        return (
            f"/subscriptions/{self.config.subscription_id}"
            f"/resourcegroups/{resource_group}"
        )

    async def resolve_location(self) -> str:
        """Return the configured Azure region."""
        return self.config.location

    async def provision(self, location: str) -> Deployment:
        """Create a resource group and deploy the configured template into it."""
        if self.config.naming_mode == "static":
            suffix = "static"
        else:
            suffix = uuid.uuid4().hex[:8]
        resource_group = f"{self.config.resource_group_prefix}-{suffix}"
        deployment_name = f"{resource_group}-deployment"

        log.info(
            "Creating resource group %s in %s for roles %s",
            resource_group,
            location,
            ", ".join(self.config.roles),
        )
        url = f"{self._group_url(resource_group)}?api-version={RESOURCES_API_VERSION}"
        async with self.session.put(url, json={"location": location}) as response:
            if response.status not in (200, 201):
                text = await response.text()
                raise ProvisioningError(
                    f"Failed to create resource group: {response.status} {text}"
                )

        try:
            await self._deploy_template(resource_group, deployment_name)
        except Exception:
            log.error("Deployment into %s failed, removing the group", resource_group)
            try:
                await self._delete_resource_group(resource_group)
            except (PlatformError, aiohttp.ClientError) as exc:
                log.error("Failed to remove resource group %s: %s", resource_group, exc)
            raise

        machines = tuple(
            MachineDescriptor(
                role_name=role,
                port=self.config.ssh_port,
                host_ref=resource_group,
            )
            for role in self.config.roles
        )
        return Deployment(
            deployment_id=resource_group, location=location, machines=machines
        )

    async def _deploy_template(self, resource_group: str, deployment_name: str) -> None:
        payload = {
            "properties": {
                "mode": "Incremental",
                "template": self.config.template,
                "parameters": {
                    key: {"value": value}
                    for key, value in self.config.template_parameters.items()
                },
            }
        }
        url = self._deployment_url(resource_group, deployment_name)
        async with self.session.put(url, json=payload) as response:
            if response.status not in (200, 201):
                text = await response.text()
                raise ProvisioningError(
                    f"Failed to start deployment: {response.status} {text}"
                )

        await self.wait_for_deployment(resource_group, deployment_name)

    def _deployment_url(self, resource_group: str, deployment_name: str) -> str:
        return (
            f"{self._group_url(resource_group)}"
            f"/providers/Microsoft.Resources/deployments/{deployment_name}"
            f"?api-version={RESOURCES_API_VERSION}"
        )

    async def get_deployment(
        self, resource_group: str, deployment_name: str
    ) -> TemplateDeployment:
        """Get a template deployment by name."""
        url = self._deployment_url(resource_group, deployment_name)
        async with self.session.get(url) as response:
            if response.status != 200:
                text = await response.text()
                raise PlatformError(
                    f"Failed to get deployment: {response.status} {text}"
                )
            data = await response.json()

        return TemplateDeployment.model_validate(data)

    async def wait_for_deployment(
        self, resource_group: str, deployment_name: str
    ) -> TemplateDeployment:
        """Poll a template deployment until it succeeds.

        Raises:
            ProvisioningError: If the deployment fails or does not finish
                within the configured timeout

        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.deployment_timeout

        while True:
            deployment = await self.get_deployment(resource_group, deployment_name)
            state = deployment.properties.provisioning_state
            if state == "Succeeded":
                log.info("Deployment %s succeeded", deployment_name)
                return deployment
            if state in FAILED_STATES:
                raise ProvisioningError(
                    f"Deployment {deployment_name} finished with state {state}"
                )

            log.info("Deployment %s still in state=%s", deployment_name, state)
            if loop.time() >= deadline:
                raise ProvisioningError(
                    f"Deployment {deployment_name} did not complete within "
                    f"{self.config.deployment_timeout} seconds"
                )
            await asyncio.sleep(self.config.poll_interval)

    async def deprovision(self, deployment: Deployment) -> None:
        """Delete the deployment's resource group."""
        await self._delete_resource_group(deployment.deployment_id)

    async def _delete_resource_group(self, resource_group: str) -> None:
        log.info("Deleting resource group %s", resource_group)
        url = f"{self._group_url(resource_group)}?api-version={RESOURCES_API_VERSION}"
        async with self.session.delete(url) as response:
            if response.status not in (200, 202, 204):
                text = await response.text()
                raise PlatformError(
                    f"Failed to delete resource group: {response.status} {text}"
                )

    async def lookup_address(self, machine: MachineDescriptor) -> str | None:
        """Return the public IP address assigned to a machine."""
        url = (
            f"{self._group_url(machine.host_ref)}"
            "/providers/Microsoft.Network/publicIPAddresses"
            f"/{machine.role_name}{self.config.public_ip_suffix}"
            f"?api-version={NETWORK_API_VERSION}"
        )
        async with self.session.get(url) as response:
            if response.status == 404:
                return None
            if response.status != 200:
                text = await response.text()
                raise PlatformError(
                    f"Failed to get public IP address: {response.status} {text}"
                )
            data = await response.json()

        return PublicIPAddress.model_validate(data).properties.ip_address

    async def _power_action(self, machine: MachineDescriptor, action: str) -> None:
        url = (
            f"{self._group_url(machine.host_ref)}"
            f"/providers/Microsoft.Compute/virtualMachines/{machine.role_name}"
            f"/{action}?api-version={COMPUTE_API_VERSION}"
        )
        async with self.session.post(url) as response:
            if response.status not in (200, 202):
                text = await response.text()
                raise PlatformError(
                    f"Failed to {action} {machine.role_name}: {response.status} {text}"
                )

    async def stop_machine(self, machine: MachineDescriptor) -> None:
        """Power off a virtual machine."""
        await self._power_action(machine, "powerOff")

    async def start_machine(self, machine: MachineDescriptor) -> None:
        """Power on a virtual machine."""
        await self._power_action(machine, "start")
