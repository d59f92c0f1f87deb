"""Request statistics sinks."""

from .base import StatsSink
from .memory import InMemoryStatsSink
from .redis_sink import RedisStatsSink

__all__ = ["StatsSink", "InMemoryStatsSink", "RedisStatsSink"]
