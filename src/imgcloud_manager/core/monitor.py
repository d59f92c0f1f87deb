"""Health polling and per-instance load tracking."""

import asyncio
import math
import logging
from typing import Callable, Optional

import aiohttp

from .config import ManagerConfig
from .registry import InstanceRegistry, average
from .types import Instance
from .exceptions import ProbeError, ProbeTimeoutError


logger = logging.getLogger(__name__)


def parse_load_header(value: Optional[str]) -> float:
    """Read the current load from a ``"load,other,..."`` header value.

    Raises:
        ValueError: If the header is missing or its first element is not a finite number
    """
    if value is None:
        raise ValueError("load header missing")

    load = float(value.split(",")[0].strip())
    if not math.isfinite(load):
        raise ValueError(f"load is not finite: {value!r}")
    return load


class LoadMonitor:
    """Probes every registered instance and keeps its recent load samples."""

    def __init__(
        self,
        registry: InstanceRegistry,
        config: ManagerConfig,
        on_probe_failure: Callable[[Instance], None],
        session: Optional[aiohttp.ClientSession] = None
    ):
        """Initialize load monitor.

        Args:
            registry: Registry whose instances are polled
            config: Manager configuration (probe path, header, timeout, window)
            on_probe_failure: Called with an instance whose probe failed
            session: HTTP session to use (created on ``start`` otherwise)
        """
        self.registry = registry
        self.config = config
        self.on_probe_failure = on_probe_failure
        self._session = session
        self._owns_session = session is None
        self.poll_count = 0

    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

    async def close(self) -> None:
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    def probe_url(self, instance: Instance) -> str:
        return f"http://{instance.host}:{instance.port}{self.config.probe_path}"

    async def probe(self, instance: Instance) -> float:
        """Issue one health probe and return the reported load.

        Args:
            instance: Instance to probe

        Returns:
            Current load reported by the instance

        Raises:
            ProbeError: On timeout, transport error, non-2xx status or bad header
        """
        if not self._session:
            raise RuntimeError("LoadMonitor.start() must be awaited before probing")

        timeout = aiohttp.ClientTimeout(total=self.config.probe_timeout)
        try:
            async with self._session.get(self.probe_url(instance), timeout=timeout) as response:
                if response.status < 200 or response.status >= 300:
                    raise ProbeError(instance.id, f"HTTP {response.status}")
                header = response.headers.get(self.config.load_header)
        except asyncio.TimeoutError as e:
            raise ProbeTimeoutError(instance.id, self.config.probe_timeout) from e
        except aiohttp.ClientError as e:
            raise ProbeError(instance.id, str(e) or type(e).__name__) from e

        try:
            return parse_load_header(header)
        except ValueError as e:
            raise ProbeError(instance.id, f"bad {self.config.load_header} header {header!r}") from e

    async def poll_all(self) -> None:
        """Probe every registered instance concurrently."""
        instances = self.registry.all()
        self.poll_count += 1
        logger.info(f"Polling... ({len(instances)} instances)")

        if not instances:
            return

        await asyncio.gather(*(self._poll_instance(instance) for instance in instances))

    async def _poll_instance(self, instance: Instance) -> None:
        try:
            load = await self.probe(instance)
        except ProbeError as e:
            logger.warning(f"{instance} died: {e.reason}")
            self.on_probe_failure(instance)
            return

        # The instance may have been retired while the probe was in flight
        current = self.registry.find_by_id(instance.id)
        if current is not instance:
            logger.debug(f"Discarding late probe result for retired instance {instance.id}")
            return

        logger.debug(f"{instance} is alive (load={load})")
        self.record_load(current, load)

    def record_load(self, instance: Instance, load: float) -> None:
        """Set the current load and append it to the bounded history."""
        instance.load = load
        instance.load_history.append(load)

    def instance_average(self, instance: Instance) -> float:
        return average(instance.load_history)

    def system_load(self) -> float:
        """Mean across instances of each instance's windowed average load."""
        return average(self.instance_average(instance) for instance in self.registry.all())
