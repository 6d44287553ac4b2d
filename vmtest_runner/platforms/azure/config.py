"""Configuration for Azure platform."""

from collections.abc import Mapping, Sequence
from typing import Any, Literal

from pydantic import BaseModel, Field, SecretStr


class AzureConfig(BaseModel):
    """Configuration for Azure platform.

    ``template`` is an ARM template deployed into a fresh resource group.
    Each role must correspond to a virtual machine named after the role and
    a public IP address named ``<role><public_ip_suffix>``.
    """

    token: SecretStr
    subscription_id: str
    location: str = "westus2"
    resource_group_prefix: str = "vmtest"
    template: Mapping[str, Any]
    template_parameters: Mapping[str, Any] = Field(default_factory=dict)
    roles: Sequence[str] = ("role-0",)
    public_ip_suffix: str = "-PublicIP"
    ssh_port: int = 22
    deployment_timeout: float = 3600
    poll_interval: float = 30
    api_base_url: str = "https://management.azure.com"
    # Use "static" for deterministic resource group names in tests
    naming_mode: Literal["random", "static"] = "random"
