"""Base class for request statistics sinks."""

from abc import ABC, abstractmethod
from typing import Dict

from ..core.types import RequestStats


class StatsSink(ABC):
    """Write-only, append-only store for per-request statistics."""
    
    def __init__(self, key_prefix: str = "imgcloud"):
        self.key_prefix = key_prefix
    
    async def start(self) -> None:
        pass
    
    async def close(self) -> None:
        pass
    
    def keys_for(self, stats: RequestStats) -> Dict[str, float]:
        """Map each of the three per-request values to its list key."""
        bucket = stats.key
        return {
            f"{self.key_prefix}-lb-response-{bucket}": stats.lb_latency_ms,
            f"{self.key_prefix}-app-response-{bucket}": stats.app_latency_ms,
            f"{self.key_prefix}-load-{bucket}": stats.load,
        }
    
    @abstractmethod
    async def write_request_stats(self, stats: RequestStats) -> None:
        """Append the three values of ``stats`` to their per-second lists.
        
        Raises:
            StatsSinkError: If the write fails
        """
        pass
