"""
Resource pressure checks used by the scheduler to preempt running encodes.
"""
import logging
from typing import List, Optional, Tuple

import psutil

logger = logging.getLogger(__name__)


class ResourceGuardrail:
    """CPU and memory thresholds. A threshold of 0 disables that check."""

    def __init__(self, cpu_guard_pct: float = 85, min_memory_gb: float = 0):
        self.cpu_guard_pct = cpu_guard_pct
        self.min_memory_gb = min_memory_gb
        # First call primes psutil's CPU counters and always reports 0.0
        psutil.cpu_percent(interval=None)

    @property
    def enabled(self) -> bool:
        return self.cpu_guard_pct > 0 or self.min_memory_gb > 0

    async def check(self) -> Tuple[bool, Optional[str]]:
        """
        Check current system load.

        Returns:
            Tuple of (under_pressure, reason)
        """
        reasons: List[str] = []

        if self.cpu_guard_pct > 0:
            cpu_percent = psutil.cpu_percent(interval=None)
            if cpu_percent > self.cpu_guard_pct:
                reasons.append(f"CPU usage {cpu_percent:.1f}% > {self.cpu_guard_pct}%")

        if self.min_memory_gb > 0:
            memory_available_gb = psutil.virtual_memory().available / (1024**3)
            if memory_available_gb < self.min_memory_gb:
                reasons.append(f"Memory {memory_available_gb:.1f}GB < {self.min_memory_gb}GB")

        if reasons:
            return True, ", ".join(reasons)
        return False, None
