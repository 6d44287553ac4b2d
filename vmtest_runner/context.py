"""Mutable state threaded through a single test run."""

from collections.abc import Sequence
from dataclasses import dataclass, field

from vmtest_runner.config import DEFAULT_TIMEOUT
from vmtest_runner.models.machine import Checkpoint, Deployment, MachineDescriptor


@dataclass(kw_only=True)
class RunContext:
    """State of one test run.

    Only the deployment controller and the readiness prober replace
    ``machines``; everything else reads it.
    """

    platform: str
    location: str = ""
    parameters: dict[str, str] = field(default_factory=dict)
    machines: Sequence[MachineDescriptor] = field(default_factory=tuple)
    timeout: float = DEFAULT_TIMEOUT
    deployment: Deployment | None = None
    checkpoints: Sequence[Checkpoint] = field(default_factory=tuple)
    freshly_deployed: bool = False
    root_enabled: bool = False
    distro: str | None = None

    @property
    def primary(self) -> MachineDescriptor:
        """The first machine of the set, used for single-target operations."""
        if not self.machines:
            raise LookupError("Run context has no machines")
        return self.machines[0]
