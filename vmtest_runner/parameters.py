"""Resolution of raw test parameters into a flat key/value map."""

import logging
from collections.abc import Callable, Mapping, Sequence

from vmtest_runner.context import RunContext
from vmtest_runner.errors import ConfigurationError

log = logging.getLogger(__name__)

SECRET_PARAMS = "SECRET_PARAMS"

# Recognised secret tokens (lower-cased) -> canonical key and the value source.
SECRET_TOKENS: Mapping[str, tuple[str, Callable[[RunContext, str], str | None]]] = {
    "password": ("PASSWD", lambda ctx, password: password),
    "rolename": ("ROLENAME", lambda ctx, _: ctx.primary.role_name),
    "distro": ("DETECTED_DISTRO", lambda ctx, _: ctx.distro),
    "ipv4": ("IPV4", lambda ctx, _: ctx.primary.address),
}


def split_parameter(entry: str) -> tuple[str, str]:
    """Split a ``name=value`` entry on the first ``=``."""
    name, sep, value = entry.partition("=")
    name = name.strip()
    if not sep or not name:
        raise ConfigurationError(
            f"Malformed test parameter {entry!r}: expected name=value"
        )
    return name, value.strip()


def parse_secret_tokens(value: str) -> Sequence[str]:
    """Parse a ``(Token1 Token2)`` or ``(Token1,Token2)`` list into its tokens."""
    inner = value.strip().removeprefix("(").removesuffix(")")
    return inner.replace(",", " ").split()


def resolve_parameters(
    entries: Sequence[str], ctx: RunContext, password: str
) -> dict[str, str]:
    """Resolve raw parameter entries against the run context.

    Keys are upper-cased, so later entries overwrite earlier ones regardless
    of the casing they were declared with. The ``SECRET_PARAMS`` entry is
    expanded into canonical keys; unrecognised tokens are ignored.

    Raises:
        ConfigurationError: If an entry has no ``=``

    """
    resolved: dict[str, str] = {}

    for entry in entries:
        name, value = split_parameter(entry)

        if name.upper() != SECRET_PARAMS:
            resolved[name.upper()] = value
            continue

        for token in parse_secret_tokens(value):
            if (secret := SECRET_TOKENS.get(token.lower())) is None:
                log.debug("Ignoring unrecognised secret token %s", token)
                continue
            key, source = secret
            secret_value = source(ctx, password)
            if secret_value is None:
                log.warning("No value available for secret token %s", token)
                secret_value = ""
            resolved[key] = secret_value

    return resolved
