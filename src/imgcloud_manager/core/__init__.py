"""Core resource-manager functionality."""

from .types import Instance, InstanceDescriptor, ProvisionAction, ProvisionDecision, RequestStats
from .registry import InstanceRegistry, average

__all__ = [
    "Instance",
    "InstanceDescriptor",
    "ProvisionAction",
    "ProvisionDecision",
    "RequestStats",
    "InstanceRegistry",
    "average",
]
