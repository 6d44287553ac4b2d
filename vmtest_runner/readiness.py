"""Polling of machines until they have a reachable network address."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeAlias

from vmtest_runner.config import DEFAULT_RETRY_INTERVAL, DEFAULT_TIMEOUT
from vmtest_runner.errors import ReadinessTimeoutError
from vmtest_runner.models.machine import MachineDescriptor

log = logging.getLogger(__name__)

AddressLookup: TypeAlias = Callable[[MachineDescriptor], Awaitable[str | None]]
ReachabilityCheck: TypeAlias = Callable[[str, int], Awaitable[bool]]


async def is_port_open(address: str, port: int, timeout: float = 3) -> bool:
    """Check whether a TCP connection to ``address:port`` can be opened."""
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(address, port), timeout=timeout
        )
    except (OSError, TimeoutError):
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


async def wait_for_readiness(
    machines: Sequence[MachineDescriptor],
    lookup_address: AddressLookup,
    check_reachable: ReachabilityCheck = is_port_open,
    timeout: float = DEFAULT_TIMEOUT,
    retry_interval: float = DEFAULT_RETRY_INTERVAL,
) -> tuple[MachineDescriptor, ...]:
    """Wait until every machine has a reachable address.

    Addresses are always looked up again, even when a descriptor already
    carries one. The deadline is shared by the whole set.

    Args:
        machines: Machines to probe
        lookup_address: Returns a candidate address for a machine, or None
        check_reachable: Returns True if ``address:port`` accepts connections
        timeout: Maximum total wait time in seconds
        retry_interval: Seconds between attempts

    Returns:
        New descriptors with addresses populated, in input order

    Raises:
        ReadinessTimeoutError: If the deadline passes before all are ready

    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    ready: list[MachineDescriptor] = []

    log.info("Waiting for %d machine(s) to become reachable", len(machines))

    for index, machine in enumerate(machines):
        while True:
            candidate = await lookup_address(machine)
            if candidate:
                if await check_reachable(candidate, machine.port):
                    log.info(
                        "Machine %s is reachable at %s:%d",
                        machine.role_name,
                        candidate,
                        machine.port,
                    )
                    ready.append(machine.with_address(candidate))
                    break
                log.debug(
                    "Machine %s has address %s but port %d is closed",
                    machine.role_name,
                    candidate,
                    machine.port,
                )

            if loop.time() >= deadline:
                unready = [m.role_name for m in machines[index:]]
                raise ReadinessTimeoutError(timeout, unready)

            await asyncio.sleep(retry_interval)

    log.info("All %d machine(s) are reachable", len(ready))
    return tuple(ready)
