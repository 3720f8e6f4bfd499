"""
Performance timers collected per instance when statistics are enabled.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

LOG = logging.getLogger(__name__)


@dataclass
class Timer:
    name: str
    samples: int = 0
    total: float = 0.0
    maximum: float = 0.0
    started_at: Optional[float] = None

    def to_dict(self) -> dict:
        average = self.total / self.samples if self.samples else 0.0
        return {
            "name": self.name,
            "samples": self.samples,
            "total_ms": round(self.total * 1000.0, 3),
            "average_ms": round(average * 1000.0, 3),
            "max_ms": round(self.maximum * 1000.0, 3),
        }


class TimerCollection:
    """
    Named wall-clock timers.  Disabled collections ignore every call.
    """

    def __init__(self, enabled: bool = False, *, clock: Optional[Callable[[], float]] = None) -> None:
        self.enabled = enabled
        self._clock = clock or time.perf_counter
        self._lock = threading.Lock()
        self._timers: Dict[str, Timer] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._timers)

    def start(self, name: str) -> None:
        if not self.enabled:
            return
        with self._lock:
            timer = self._timers.setdefault(name, Timer(name=name))
            timer.started_at = self._clock()

    def stop(self, name: str) -> None:
        if not self.enabled:
            return
        with self._lock:
            timer = self._timers.get(name)
            if timer is None or timer.started_at is None:
                LOG.debug("Timer '%s' stopped without being started", name)
                return
            elapsed = self._clock() - timer.started_at
            timer.started_at = None
            timer.samples += 1
            timer.total += elapsed
            timer.maximum = max(timer.maximum, elapsed)

    def dump_all(self, logger: Optional[logging.Logger] = None) -> List[dict]:
        with self._lock:
            report = [timer.to_dict() for timer in self._timers.values()]
        target = logger or LOG
        for entry in report:
            target.info(
                "timer %(name)s: %(samples)d samples, total %(total_ms).3f ms, "
                "average %(average_ms).3f ms, max %(max_ms).3f ms",
                entry,
            )
        return report

    def clean(self) -> None:
        with self._lock:
            self._timers.clear()
