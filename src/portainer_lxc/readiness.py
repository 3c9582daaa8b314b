"""Container readiness checking.

A container can report "running" before eth0 has an address or the guest's
routes are up, so readiness is a two-phase check: host status first, then a
ping from inside the container.
"""

import logging
import time
from typing import Any, Callable, Optional

from portainer_lxc.models import ContainerHandle, ContainerState, ReadinessResult

logger = logging.getLogger(__name__)


class ContainerProbe:
    """One status + network check against a container."""

    def __init__(self, client: Any, handle: ContainerHandle, probe_address: str = "8.8.8.8"):
        """Initialize the probe.

        Args:
            client: ProxmoxClient (or compatible) for the container's node
            handle: Container to check
            probe_address: External address pinged from inside the container
        """
        self.client = client
        self.handle = handle
        self.probe_address = probe_address
        self.last_state: Optional[ContainerState] = None

    def check(self) -> ContainerState:
        """Observe the container once.

        Returns:
            STARTING until the host reports "running", RUNNING until the
            ping succeeds, READY afterwards
        """
        state = self._observe()
        if state != self.last_state:
            logger.info(f"Container {self.handle.ctid} is {state.value}")
        self.last_state = state
        return state

    def _observe(self) -> ContainerState:
        try:
            status = self.client.container_status(self.handle.ctid)
            if status != "running":
                return ContainerState.STARTING

            result = self.client.exec_in_container(
                self.handle.ctid, f"ping -c 1 -W 2 {self.probe_address}", timeout=10
            )
        except Exception as e:
            logger.debug(f"Container {self.handle.ctid} not ready yet: {e}")
            return self.last_state or ContainerState.STARTING

        return ContainerState.READY if result.ok else ContainerState.RUNNING


def wait_for_ready(
    check: Callable[[], ContainerState],
    max_attempts: int = 30,
    interval: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> ReadinessResult:
    """Poll ``check`` at a fixed interval until READY or the attempts run out.

    Ready after k polls means exactly k - 1 sleeps; a timeout means exactly
    ``max_attempts`` polls. There is no backoff.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    for attempt in range(1, max_attempts + 1):
        state = check()
        logger.debug(f"Readiness attempt {attempt}/{max_attempts}: {state.value}")
        if state == ContainerState.READY:
            return ReadinessResult.READY
        if attempt < max_attempts:
            sleep(interval)

    return ReadinessResult.TIMED_OUT
