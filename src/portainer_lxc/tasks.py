"""Handles for long-running host operations and the spinner that follows them.

A task exposes ``poll()`` (non-blocking, True once finished) and ``join()``
(block until finished, return the result or raise). ``track`` renders a
spinner while polling; the spinner never changes the task's outcome.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Type

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from portainer_lxc.exceptions import ProvisionError, ProvisioningError

logger = logging.getLogger(__name__)


class BackgroundTask:
    """A long-running operation with a poll/join contract."""

    description: str = ""

    def poll(self) -> bool:
        raise NotImplementedError

    def join(self) -> Any:
        raise NotImplementedError


class HostTask(BackgroundTask):
    """A Proxmox worker task identified by its UPID."""

    def __init__(
        self,
        client: Any,
        upid: str,
        description: str,
        timeout: float = 600,
        interval: float = 1.0,
        error_cls: Type[ProvisionError] = ProvisioningError,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.upid = upid
        self.description = description
        self.timeout = timeout
        self.interval = interval
        self.error_cls = error_cls
        self._sleep = sleep
        self._clock = clock
        self._status: Optional[Dict[str, Any]] = None

    def poll(self) -> bool:
        if self._status is not None:
            return True
        status = self.client.task_status(self.upid)
        if status.get("status") == "stopped":
            self._status = status
            return True
        return False

    def join(self) -> Dict[str, Any]:
        deadline = self._clock() + self.timeout
        while not self.poll():
            if self._clock() >= deadline:
                raise self.error_cls(f"{self.description} did not finish within {self.timeout} seconds")
            self._sleep(self.interval)

        exitstatus = str(self._status.get("exitstatus", ""))  # type: ignore[union-attr]
        # Proxmox reports "OK" or "WARNINGS: n" for tasks that completed
        if exitstatus != "OK" and not exitstatus.startswith("WARNINGS"):
            raise self.error_cls(f"{self.description} failed: {exitstatus or 'unknown error'}")
        if exitstatus != "OK":
            logger.warning(f"{self.description} finished with {exitstatus}")
        return self._status  # type: ignore[return-value]


class ThreadTask(BackgroundTask):
    """A blocking callable run on a single worker thread."""

    def __init__(self, fn: Callable[..., Any], *args: Any, description: str = "") -> None:
        self.description = description
        self._executor = ThreadPoolExecutor(max_workers=1)
        self._future = self._executor.submit(fn, *args)

    def poll(self) -> bool:
        return self._future.done()

    def join(self) -> Any:
        try:
            return self._future.result()
        finally:
            self._executor.shutdown(wait=False)


def track(
    task: BackgroundTask,
    console: Optional[Console] = None,
    poll_interval: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Show a spinner until the task finishes, then return ``task.join()``."""
    console = console or Console()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        spinner = progress.add_task(task.description, total=None)
        while True:
            try:
                if task.poll():
                    break
            except Exception as e:
                # join() reports the real failure
                logger.debug(f"Polling {task.description!r} failed: {e}")
                break
            sleep(poll_interval)
        progress.update(spinner, completed=True)

    return task.join()
