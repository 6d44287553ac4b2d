"""Constants payload passed to remote scripts."""

from collections.abc import Mapping

CONSTANTS_FILE = "constants.sh"
GENERATED_BY = "# Generated by vmtest_runner"


def render_constants(parameters: Mapping[str, str]) -> str:
    """Render parameters as ``KEY=VALUE`` lines under a generated-by header."""
    lines = [GENERATED_BY]
    lines.extend(f"{key}={value}" for key, value in parameters.items())
    return "\n".join(lines) + "\n"


def parse_constants(text: str) -> dict[str, str]:
    """Parse a constants payload back into a map, skipping comments."""
    parameters: dict[str, str] = {}
    for line in text.splitlines():
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        key, _, value = line.partition("=")
        parameters[key.strip()] = value
    return parameters
