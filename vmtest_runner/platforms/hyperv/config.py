"""Configuration for Hyper-V platform."""

from collections.abc import Sequence

from pydantic import BaseModel


class HyperVConfig(BaseModel):
    """Configuration for Hyper-V platform.

    Every role gets a VM named ``<vm_prefix>-<role>`` booting from a
    differencing disk on top of ``parent_vhd``.
    """

    host: str = "localhost"
    parent_vhd: str
    vhd_dir: str
    switch_name: str
    roles: Sequence[str] = ("role-0",)
    vm_prefix: str = "vmtest"
    memory_mb: int = 3584
    generation: int = 1
    ssh_port: int = 22
    powershell: str = "powershell"
    command_timeout: float = 600
