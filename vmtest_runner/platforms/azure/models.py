"""Pydantic models for Azure Resource Manager API responses."""

from typing import Literal, TypeAlias

from pydantic import BaseModel, Field

ProvisioningState: TypeAlias = Literal[
    "Accepted",
    "Running",
    "Ready",
    "Creating",
    "Created",
    "Deleting",
    "Deleted",
    "Canceled",
    "Failed",
    "Succeeded",
    "Updating",
]


class DeploymentProperties(BaseModel):
    """Properties of a template deployment."""

    provisioning_state: ProvisioningState = Field(alias="provisioningState")


class TemplateDeployment(BaseModel):
    """A template deployment from Azure Resource Manager API."""

    id: str
    name: str
    properties: DeploymentProperties


class PublicIPProperties(BaseModel):
    """Properties of a public IP address resource."""

    ip_address: str | None = Field(default=None, alias="ipAddress")


class PublicIPAddress(BaseModel):
    """A public IP address resource."""

    name: str
    properties: PublicIPProperties
