"""Models describing deployed test machines."""

from collections.abc import Sequence
from dataclasses import dataclass, field, replace


@dataclass(frozen=True, kw_only=True)
class MachineDescriptor:
    """One addressable test target."""

    role_name: str
    address: str | None = None
    port: int = 22
    host_ref: str = ""

    def with_address(self, address: str) -> "MachineDescriptor":
        """Return a copy of this descriptor with ``address`` set."""
        return replace(self, address=address)


@dataclass(frozen=True, kw_only=True)
class Checkpoint:
    """Named saved state of one machine."""

    name: str
    role_name: str


@dataclass(frozen=True, kw_only=True)
class Deployment:
    """Handle returned by a platform after provisioning."""

    deployment_id: str
    location: str
    machines: Sequence[MachineDescriptor] = field(default_factory=tuple)
