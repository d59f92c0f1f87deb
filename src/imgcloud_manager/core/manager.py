"""Resource manager control loop."""

import asyncio
import logging
import random
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from .config import ManagerConfig
from .context import ManagerContext, TaskHook
from .events import EventIngestor, IngressEvent, parse_event
from .failure import FailureDetector
from .monitor import LoadMonitor
from .provisioner import Provisioner
from .types import Instance, InstanceDescriptor
from .exceptions import EventValidationError
from ..providers.base import InstanceProvider
from ..stats.base import StatsSink
from ..stats.memory import InMemoryStatsSink


logger = logging.getLogger(__name__)


BootstrapEntry = Union[InstanceDescriptor, Mapping[str, Any]]


class ResourceManager:
    """Keeps the instance pool sized to load and replaces dead instances.

    Two independent timers drive the loop: the poll timer probes every
    instance, the provision timer compares aggregate load with the
    thresholds. Ingress events from the routing layer arrive through
    :meth:`emit`. Everything runs on one event loop, so registry mutations
    never interleave.
    """

    def __init__(
        self,
        provider: InstanceProvider,
        config: Optional[ManagerConfig] = None,
        stats_sink: Optional[StatsSink] = None,
        on_task_done: Optional[TaskHook] = None,
        rng: Optional[random.Random] = None
    ):
        """Initialize resource manager.

        Args:
            provider: IaaS provider used to allocate and deallocate instances
            config: Manager configuration (defaults when omitted)
            stats_sink: Request statistics sink (in-memory when omitted)
            on_task_done: Hook for background provider/stats task outcomes
            rng: Random source for bootstrap loads
        """
        self.config = config or ManagerConfig()
        self.config.validate()

        self.context = ManagerContext(
            config=self.config,
            provider=provider,
            stats_sink=stats_sink or InMemoryStatsSink(self.config.stats.key_prefix),
            on_task_done=on_task_done
        )
        self.rng = rng or random.Random()

        self.failure_detector = FailureDetector(self.context)
        self.monitor = LoadMonitor(
            self.context.registry,
            self.config,
            on_probe_failure=self.failure_detector.mark_dead
        )
        self.provisioner = Provisioner(self.context, system_load=self.monitor.system_load)
        self.ingestor = EventIngestor(self.context, mark_dead=self.failure_detector.mark_dead)

        self._timer_tasks: List[asyncio.Task] = []
        self._running = False

    @property
    def registry(self):
        return self.context.registry

    @property
    def is_running(self) -> bool:
        return self._running

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self) -> None:
        """Open the probe session and the stats sink."""
        await self.monitor.start()
        await self.context.stats_sink.start()

    async def stop(self) -> None:
        """Stop the timers, wait for background work and close connections."""
        await self.stop_timers()
        await self.context.drain()
        await self.monitor.close()
        await self.context.stats_sink.close()
        logger.info("Resource manager stopped")

    def bootstrap(self, initial_instances: Optional[Iterable[BootstrapEntry]] = None) -> List[Instance]:
        """Seed the registry and start the timers.

        Each seeded instance gets a synthetic load in ``[0, 100]`` and an
        empty history. Timers stay off when ``polling_enabled`` is false.

        Args:
            initial_instances: Descriptors (or ``id``/``host``/``port`` dicts)

        Returns:
            Instances now in the registry
        """
        registry = self.context.registry
        for existing in registry.all():
            registry.remove_by_id(existing.id)

        for entry in initial_instances or []:
            descriptor = entry if isinstance(entry, InstanceDescriptor) else InstanceDescriptor(
                id=int(entry["id"]), host=str(entry["host"]), port=int(entry["port"])
            )
            instance = Instance.from_descriptor(
                descriptor,
                self.config.history_window,
                load=round(self.rng.random() * 100)
            )
            registry.add(instance)

        logger.info(f"Found {len(registry)} bootstrap instances")

        if self.config.polling_enabled:
            self.start_timers()
        else:
            logger.info("Polling disabled; timers not started")

        return registry.all()

    def start_timers(self) -> None:
        if self._running:
            logger.warning("Timers already running")
            return

        self._running = True
        self._timer_tasks = [
            asyncio.ensure_future(self._run_periodically(
                self.config.poll_interval, self.monitor.poll_all, "poll"
            )),
            asyncio.ensure_future(self._run_periodically(
                self.config.provision_interval, self.provisioner.provision, "provision"
            )),
        ]
        logger.info(
            f"Started timers (poll every {self.config.poll_interval}s, "
            f"provision every {self.config.provision_interval}s)"
        )

    async def stop_timers(self) -> None:
        self._running = False

        for task in self._timer_tasks:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._timer_tasks = []

    async def _run_periodically(self, interval: float, action: Callable, label: str) -> None:
        """Call ``action`` every ``interval`` seconds until stopped."""
        loop = asyncio.get_running_loop()
        next_run = loop.time() + interval

        while self._running:
            await asyncio.sleep(max(0.0, next_run - loop.time()))
            try:
                result = action()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Error in {label} timer: {e}")
            next_run += interval

    async def run_forever(self) -> None:
        """Block until the timers are cancelled."""
        if self._timer_tasks:
            await asyncio.gather(*self._timer_tasks, return_exceptions=True)
        else:
            await asyncio.Event().wait()

    def emit(self, kind: str, payload: Union[Mapping[str, Any], IngressEvent]) -> bool:
        """Receive an event from the routing layer.

        Args:
            kind: ``serverFailure`` or ``requestEnd``
            payload: Raw field mapping or an already validated event

        Returns:
            True if the event was valid and its instance was known
        """
        logger.debug(f"Received {kind}")
        try:
            if isinstance(payload, Mapping):
                event = parse_event(kind, payload)
            elif getattr(payload, "kind", None) != kind:
                raise EventValidationError(kind, ["payload kind does not match"])
            else:
                event = payload
            return self.ingestor.ingest(event)
        except EventValidationError as e:
            logger.warning(f"Rejected {kind} event: {e}")
            return False

    def get_status(self) -> Dict[str, Any]:
        """Snapshot of the pool for reporting."""
        last = self.provisioner.last_decision
        return {
            "running": self._running,
            "instance_count": len(self.context.registry),
            "system_load": self.monitor.system_load(),
            "instances": [
                {
                    "id": instance.id,
                    "host": instance.host,
                    "port": instance.port,
                    "load": instance.load,
                    "average_load": self.monitor.instance_average(instance),
                    "load_history": list(instance.load_history),
                }
                for instance in self.context.registry.all()
            ],
            "last_decision": None if last is None else {
                "action": last.action.value,
                "system_load": last.system_load,
                "instance_count": last.instance_count,
                "target_instance_id": last.target_instance_id,
                "timestamp": last.timestamp.isoformat(),
            },
            "next_available_id": self.context.registry.next_available_id,
            "pending_tasks": self.context.pending_tasks,
            "counters": dict(self.context.counters),
        }
