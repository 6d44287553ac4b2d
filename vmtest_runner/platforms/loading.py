"""Loading of platforms from entry points."""

from importlib.metadata import entry_points
from typing import Any

from vmtest_runner.platforms.manifest import PlatformManifest

ENTRY_POINT_GROUP = "vmtest_runner.platforms"


class PlatformNotFoundError(Exception):
    """Raised when a platform is not found."""


def load_platform_manifest(key: str) -> PlatformManifest[Any]:
    """Load a platform manifest by key.

    Args:
        key: The platform key as registered in pyproject.toml
             (e.g., "azure", "hyperv")

    Returns:
        The platform manifest instance

    Raises:
        PlatformNotFoundError: If no platform with the given key is found

    """
    entries = entry_points(group=ENTRY_POINT_GROUP)

    for entry in entries:
        if entry.name == key:
            manifest: PlatformManifest[Any] = entry.load()
            return manifest

    available = [e.name for e in entries]
    raise PlatformNotFoundError(
        f"Platform '{key}' not found. Available platforms: {available}"
    )
