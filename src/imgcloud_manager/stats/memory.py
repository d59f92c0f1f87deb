"""In-process stats sink."""

from collections import defaultdict
from typing import Dict, List

from .base import StatsSink
from ..core.types import RequestStats


class InMemoryStatsSink(StatsSink):
    """Keeps per-key lists in memory; used when Redis is not configured."""
    
    def __init__(self, key_prefix: str = "imgcloud"):
        super().__init__(key_prefix)
        self.lists: Dict[str, List[float]] = defaultdict(list)
        self.writes: List[RequestStats] = []
    
    async def write_request_stats(self, stats: RequestStats) -> None:
        self.writes.append(stats)
        for key, value in self.keys_for(stats).items():
            self.lists[key].append(value)
