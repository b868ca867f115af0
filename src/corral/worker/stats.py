"""
Worker host statistics.

Samples memory, disk, CPU and load averages with psutil and keeps the most
recent sample for the `/stats` endpoint.
"""

from __future__ import annotations

import os
import threading
from typing import Callable, Optional

import psutil
import structlog

from corral.common.constants import TIMEOUTS
from corral.common.schemas import DiskStats, LoadStats, MemoryStats, Stats


logger = structlog.get_logger(__name__)


def get_stats(task_count: int = 0, disk_path: str = "/") -> Stats:
    """Take one sample of the host's resource usage"""
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage(disk_path)
    try:
        one, five, fifteen = os.getloadavg()
    except OSError:
        one = five = fifteen = 0.0

    return Stats(
        memory=MemoryStats(
            total=memory.total,
            available=memory.available,
            used=memory.total - memory.available,
            percent=memory.percent,
        ),
        disk=DiskStats(total=disk.total, free=disk.free, used=disk.used),
        cpu_percent=psutil.cpu_percent(interval=None),
        load=LoadStats(one=one, five=five, fifteen=fifteen),
        task_count=task_count,
    )


class StatsCollector:
    """Periodically refreshes the host statistics"""

    def __init__(
        self,
        task_count: Callable[[], int],
        interval: float = TIMEOUTS["STATS_INTERVAL"],
    ):
        self._task_count = task_count
        self.interval = interval
        self._latest: Optional[Stats] = None
        self._lock = threading.Lock()

    def collect(self) -> Stats:
        stats = get_stats(task_count=self._task_count())
        with self._lock:
            self._latest = stats
        return stats

    @property
    def latest(self) -> Stats:
        with self._lock:
            latest = self._latest
        return latest if latest is not None else self.collect()

    def run_forever(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            logger.debug("Collecting system stats")
            try:
                self.collect()
            except (OSError, psutil.Error) as e:
                logger.warning("Failed to collect stats", error=str(e))
            stop_event.wait(self.interval)
