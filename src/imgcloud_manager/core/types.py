"""Core type definitions for the resource manager."""

from collections import deque
from datetime import datetime
from enum import Enum
from typing import Deque, Optional
from dataclasses import dataclass, field


class ProvisionAction(str, Enum):
    """Outcome of one provisioning cycle."""
    ALLOCATE = "allocate"
    DEALLOCATE = "deallocate"
    NONE = "none"


@dataclass(frozen=True)
class InstanceDescriptor:
    """Address of a compute instance as reported by the IaaS provider."""
    id: int
    host: str
    port: int


@dataclass
class Instance:
    """One backend compute instance known to the registry."""
    id: int
    host: str
    port: int
    load: float = 0.0
    history_window: int = 6
    load_history: Deque[float] = field(init=False, repr=False)

    def __post_init__(self):
        if self.history_window < 1:
            raise ValueError(f"history_window must be positive, got {self.history_window}")
        # Appending at capacity evicts the oldest sample
        self.load_history = deque(maxlen=self.history_window)

    @classmethod
    def from_descriptor(
        cls,
        descriptor: InstanceDescriptor,
        history_window: int,
        load: float = 0.0
    ) -> 'Instance':
        return cls(
            id=descriptor.id,
            host=descriptor.host,
            port=descriptor.port,
            load=load,
            history_window=history_window
        )

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def __str__(self) -> str:
        return f"Instance({self.id} @ {self.address}, load={self.load})"


@dataclass
class ProvisionDecision:
    """Result of a provisioning cycle."""
    action: ProvisionAction
    system_load: float
    instance_count: int
    target_instance_id: Optional[int] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class RequestStats:
    """Per-request timings forwarded to the stats sink."""
    instance_id: int
    timestamp: datetime
    lb_latency_ms: float
    app_latency_ms: float
    load: float

    @property
    def key(self) -> str:
        """Per-second bucket key, e.g. ``3-14:5:9``."""
        t = self.timestamp
        return f"{self.instance_id}-{t.hour}:{t.minute}:{t.second}"
