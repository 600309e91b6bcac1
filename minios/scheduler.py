"""Long and short term scheduling of processes."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Optional

from .process import (
    KernelConfig,
    Pcb,
    SchedulingAlgorithm,
    estimate_next_burst,
    highest_response_ratio,
    update_response_ratios,
)

log = logging.getLogger(__name__)


class Clock:
    """Milliseconds elapsed since the clock was created."""

    def __init__(self, source: Callable[[], float] = time.monotonic):
        self._source = source
        self._start = source()

    def now(self) -> int:
        return int((self._source() - self._start) * 1000)


class Scheduler:
    """Holds the NEW and READY queues and decides who runs next."""

    def __init__(self, config: KernelConfig, clock: Optional[Clock] = None):
        self.config = config
        self.clock = clock if clock is not None else Clock()
        self.new: deque[Pcb] = deque()
        self.ready: list[Pcb] = []
        self.running: Optional[Pcb] = None
        self.free_slots = config.max_multiprogramming
        self._lock = threading.Lock()

    def add_new(self, pcb: Pcb) -> None:
        """Put a freshly created process in NEW."""
        with self._lock:
            self.new.append(pcb)
        log.warning("Process %d created in NEW", pcb.pid)

    def admit(self) -> list[Pcb]:
        """Move processes from NEW to READY while the multiprogramming degree allows."""
        admitted = []
        while True:
            with self._lock:
                if not self.new or self.free_slots <= 0:
                    break
                self.free_slots -= 1
                pcb = self.new.popleft()
            self.send_to_ready(pcb)
            log.warning("PID: %d - previous state: NEW - current state: READY", pcb.pid)
            admitted.append(pcb)
        return admitted

    def send_to_ready(self, pcb: Pcb) -> None:
        """Append a process to READY, stamping its arrival time."""
        pcb.ready_since = self.clock.now()
        with self._lock:
            self.ready.append(pcb)
            pids = ", ".join(str(p.pid) for p in self.ready)
        log.warning("Ready queue %s: [%s]", self.config.algorithm.value, pids)

    def pick_next(self) -> Optional[Pcb]:
        """Choose the next process to run, or None if the CPU is busy or READY is empty."""
        with self._lock:
            if self.running is not None or not self.ready:
                return None
            if self.config.algorithm is SchedulingAlgorithm.FIFO:
                pcb = self.ready.pop(0)
            else:
                update_response_ratios(self.ready, self.clock.now())
                pcb = highest_response_ratio(self.ready)
                self.ready.remove(pcb)
            pcb.running_since = self.clock.now()
            self.running = pcb
        log.warning("PID: %d - previous state: READY - current state: RUNNING", pcb.pid)
        return pcb

    def release_slot(self) -> None:
        """A process finished: one more process may be admitted."""
        with self._lock:
            self.free_slots += 1

    def ready_pids(self) -> list[int]:
        """Pids in READY, in queue order."""
        with self._lock:
            return [pcb.pid for pcb in self.ready]

    def leave_cpu(self, pcb: Pcb) -> None:
        """Record that ``pcb`` stopped running, re-estimate its burst and free the CPU."""
        pcb.left_running_at = self.clock.now()
        estimate_next_burst(pcb, self.config.hrrn_alpha)
        with self._lock:
            if self.running is pcb:
                self.running = None