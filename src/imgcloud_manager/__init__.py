"""
imgcloud-manager: resource manager for a horizontally scaled image service.

Keeps a pool of backend instances behind the load balancer sized to the
observed load, and replaces instances that stop answering health probes.
"""

from .core.manager import ResourceManager
from .core.config import ManagerConfig, load_config
from .core.registry import InstanceRegistry, average
from .core.monitor import LoadMonitor
from .core.failure import FailureDetector
from .core.provisioner import Provisioner
from .core.events import EventIngestor, ServerFailureEvent, RequestEndEvent, parse_event
from .core.types import Instance, InstanceDescriptor, ProvisionAction, ProvisionDecision
from .providers import InstanceProvider, DigitalOceanProvider, LocalProcessProvider
from .stats import StatsSink, InMemoryStatsSink, RedisStatsSink

__version__ = "0.1.0"

__all__ = [
    # Control loop
    "ResourceManager",
    "ManagerConfig",
    "load_config",
    # Components
    "InstanceRegistry",
    "LoadMonitor",
    "FailureDetector",
    "Provisioner",
    "EventIngestor",
    "average",
    # Data types
    "Instance",
    "InstanceDescriptor",
    "ProvisionAction",
    "ProvisionDecision",
    "ServerFailureEvent",
    "RequestEndEvent",
    "parse_event",
    # Collaborators
    "InstanceProvider",
    "DigitalOceanProvider",
    "LocalProcessProvider",
    "StatsSink",
    "InMemoryStatsSink",
    "RedisStatsSink",
]
