"""Shared state handed to every control-loop component."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from .config import ManagerConfig
from .registry import InstanceRegistry
from .types import Instance, InstanceDescriptor
from .exceptions import DuplicateInstanceError
from ..providers.base import InstanceProvider
from ..stats.base import StatsSink


logger = logging.getLogger(__name__)


# (description, error or None) -> None
TaskHook = Callable[[str, Optional[BaseException]], None]


class ManagerContext:
    """Owns the registry and the collaborators of one resource manager.

    Components receive the context explicitly; nothing here is global, so
    several managers can coexist in one process.
    """

    def __init__(
        self,
        config: ManagerConfig,
        provider: InstanceProvider,
        stats_sink: StatsSink,
        registry: Optional[InstanceRegistry] = None,
        on_task_done: Optional[TaskHook] = None
    ):
        """Initialize manager context.

        Args:
            config: Manager configuration
            provider: IaaS provider used for allocate/deallocate
            stats_sink: Destination for request statistics
            registry: Pre-built registry (a fresh one by default)
            on_task_done: Hook called when a background task finishes
        """
        self.config = config
        self.provider = provider
        self.stats_sink = stats_sink
        self.registry = registry or InstanceRegistry(first_port=config.initial_port)
        self.on_task_done = on_task_done

        self._tasks: Set[asyncio.Task] = set()
        self.counters = {
            'allocations_requested': 0,
            'allocations_confirmed': 0,
            'allocations_failed': 0,
            'deallocations_requested': 0,
            'deallocations_confirmed': 0,
            'deallocations_failed': 0,
            'retirements': 0,
        }

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable, description: str) -> asyncio.Task:
        """Run ``coro`` in the background without awaiting it.

        The outcome is logged and reported to ``on_task_done``; exceptions
        never propagate to the caller.
        """
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def _finished(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                error: Optional[BaseException] = asyncio.CancelledError()
                logger.warning(f"{description} cancelled")
            else:
                error = t.exception()
                if error is not None:
                    logger.error(f"{description} failed: {error}")
                else:
                    logger.debug(f"{description} finished")

            if self.on_task_done:
                try:
                    self.on_task_done(description, error)
                except Exception as e:
                    logger.error(f"Error in task hook: {e}")

        task.add_done_callback(_finished)
        return task

    async def drain(self) -> None:
        """Wait until every background task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def request_allocation(self) -> asyncio.Task:
        """Ask the provider for one new instance.

        The id is reserved synchronously; the instance joins the registry
        once the provider confirms it.
        """
        instance_id = self.registry.reserve_id()
        port = self.registry.reserve_port()
        self.counters['allocations_requested'] += 1
        logger.info(f"Allocating instance with ID: {instance_id}")

        return self.spawn(
            self._allocate(instance_id, port),
            f"allocate instance {instance_id}"
        )

    async def _allocate(self, instance_id: int, port: int) -> Instance:
        try:
            descriptor: InstanceDescriptor = await self.provider.allocate(instance_id, port)
        except Exception:
            self.counters['allocations_failed'] += 1
            raise

        instance = Instance.from_descriptor(descriptor, self.config.history_window)
        try:
            self.registry.add(instance)
        except DuplicateInstanceError:
            self.counters['allocations_failed'] += 1
            raise

        self.counters['allocations_confirmed'] += 1
        logger.info(f"Allocation confirmed: {instance}")
        return instance

    def request_deallocation(self, instance: Instance) -> asyncio.Task:
        """Ask the provider to destroy ``instance`` (fire-and-forget).

        The registry is not touched; callers remove the instance first.
        """
        self.counters['deallocations_requested'] += 1
        logger.info(f"Deallocating instance: {instance}")

        return self.spawn(
            self._deallocate(instance),
            f"deallocate instance {instance.id}"
        )

    async def _deallocate(self, instance: Instance) -> None:
        try:
            await self.provider.deallocate(instance)
        except Exception:
            self.counters['deallocations_failed'] += 1
            raise

        self.counters['deallocations_confirmed'] += 1
        logger.info(f"Successfully deallocated: {instance}")
