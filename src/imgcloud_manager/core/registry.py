"""In-memory registry of known compute instances."""

import logging
import statistics
from typing import Dict, Iterable, List, Optional

from .types import Instance
from .exceptions import DuplicateInstanceError


logger = logging.getLogger(__name__)


def average(values: Iterable[float]) -> float:
    """Mean of ``values``; 0 for an empty sequence.

    Computed exactly: the mean of identical samples is that sample.
    """
    values = list(values)
    if not values:
        return 0.0
    return float(statistics.mean(values))


class InstanceRegistry:
    """Ordered set of instances keyed by id.

    Also hands out the monotonic id and port counters used when new
    instances are requested from the provider.
    """

    def __init__(self, first_id: int = 1, first_port: int = 8001):
        self._instances: Dict[int, Instance] = {}
        self.next_available_id = first_id
        self.next_available_port = first_port

    def __len__(self) -> int:
        return len(self._instances)

    def __contains__(self, instance_id: int) -> bool:
        return instance_id in self._instances

    def add(self, instance: Instance) -> None:
        """Register an instance.

        Args:
            instance: Instance to add

        Raises:
            DuplicateInstanceError: If the id is already registered
        """
        if instance.id in self._instances:
            raise DuplicateInstanceError(instance.id)

        self._instances[instance.id] = instance
        self.reserve_past(instance.id, instance.port)
        logger.info(f"Registered {instance}")

    def remove_by_id(self, instance_id: int) -> bool:
        """Remove an instance.

        Args:
            instance_id: Id of the instance to remove

        Returns:
            True if the instance was registered and has been removed
        """
        instance = self._instances.pop(instance_id, None)
        if instance is None:
            return False

        logger.info(f"Removed {instance}")
        return True

    def find_by_id(self, instance_id: int) -> Optional[Instance]:
        return self._instances.get(instance_id)

    def all(self) -> List[Instance]:
        """Snapshot of registered instances in insertion order."""
        return list(self._instances.values())

    def first(self) -> Optional[Instance]:
        return next(iter(self._instances.values()), None)

    def reserve_id(self) -> int:
        instance_id = self.next_available_id
        self.next_available_id += 1
        return instance_id

    def reserve_port(self) -> int:
        port = self.next_available_port
        self.next_available_port += 1
        return port

    def reserve_past(self, instance_id: int, port: Optional[int] = None) -> None:
        """Move the counters beyond an id/port that is already in use."""
        self.next_available_id = max(self.next_available_id, instance_id + 1)
        if port is not None:
            self.next_available_port = max(self.next_available_port, port + 1)
