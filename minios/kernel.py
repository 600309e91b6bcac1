"""Kernel: process creation, dispatching and handling of evicted processes."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from enum import Enum
from typing import Any, Callable, NamedTuple, Optional, Sequence

from .cpu import ExecutionContext
from .instructions import Instruction
from .kernel_files import FileManager, FileRequests
from .mmu import Segment, find_segment
from .process import (
    KernelConfig,
    Pcb,
    build_resources,
    find_by_pid,
    find_resource,
    release_resources,
)
from .scheduler import Clock, Scheduler

log = logging.getLogger(__name__)

_IO_POLL_SECONDS = 0.01


class MemoryReply(Enum):
    """Answer of memory to a segment creation request."""

    CREATED = "CREATED"
    COMPACTION = "COMPACTION"
    OUT_OF_MEMORY = "OUT_OF_MEMORY"


class SegmentReply(NamedTuple):
    """Reply to a segment creation request; ``base`` is set when CREATED."""

    reply: MemoryReply
    base: int = 0


def _copies(table: Sequence[Segment]) -> list[Segment]:
    return [replace(segment) for segment in table]


class SegmentMemory:
    """User memory split into segments, with a shared segment 0 at address 0."""

    def __init__(self, size: int, segment_zero_size: int, segment_count: int):
        if segment_count < 1:
            raise ValueError("a segment table needs at least segment 0")
        if not 0 <= segment_zero_size <= size:
            raise ValueError("segment 0 does not fit in memory")
        self.size = size
        self.segment_count = segment_count
        self.segment_zero = Segment(0, 0, segment_zero_size)
        self.tables: dict[int, list[Segment]] = {}
        self._lock = threading.Lock()

    def _table(self, pid: int) -> list[Segment]:
        try:
            return self.tables[pid]
        except KeyError:
            raise KeyError(f"process {pid} has no segment table") from None

    def _used(self) -> list[Segment]:
        used = [self.segment_zero] if self.segment_zero.size else []
        for table in self.tables.values():
            used.extend(seg for seg in table if seg.id != 0 and seg.size > 0)
        return sorted(used, key=lambda seg: seg.base)

    def _first_hole(self, size: int) -> Optional[int]:
        start = 0
        for segment in self._used():
            if segment.base - start >= size:
                return start
            start = max(start, segment.base + segment.size)
        return start if self.size - start >= size else None

    def new_table(self, pid: int) -> list[Segment]:
        """Create the table of a new process: segment 0 and empty slots."""
        with self._lock:
            if pid in self.tables:
                raise ValueError(f"process {pid} already has a segment table")
            table = [self.segment_zero] + [
                Segment(number, 0, 0) for number in range(1, self.segment_count)
            ]
            self.tables[pid] = table
            return _copies(table)

    def _slot(self, pid: int, segment_id: int) -> Segment:
        if not 1 <= segment_id < self.segment_count:
            raise ValueError(f"invalid segment id {segment_id}")
        segment = find_segment(self._table(pid), segment_id)
        if segment is None:
            raise ValueError(f"invalid segment id {segment_id}")
        return segment

    def create_segment(self, pid: int, segment_id: int, size: int) -> SegmentReply:
        """Place a segment, or tell that compaction is needed or memory is full."""
        if size <= 0:
            raise ValueError(f"invalid segment size {size}")
        with self._lock:
            segment = self._slot(pid, segment_id)
            if segment.size > 0:
                raise ValueError(f"segment {segment_id} of process {pid} already exists")
            free = self.size - sum(seg.size for seg in self._used())
            if size > free:
                return SegmentReply(MemoryReply.OUT_OF_MEMORY)
            base = self._first_hole(size)
            if base is None:
                return SegmentReply(MemoryReply.COMPACTION)
            segment.base = base
            segment.size = size
            return SegmentReply(MemoryReply.CREATED, base)

    def compact(self) -> dict[int, list[Segment]]:
        """Move every segment down to close the holes; return all tables."""
        with self._lock:
            position = self.segment_zero.size
            for pid in sorted(self.tables):
                for segment in sorted(self.tables[pid], key=lambda seg: seg.id):
                    if segment.id == 0 or segment.size == 0:
                        continue
                    segment.base = position
                    position += segment.size
            return {pid: _copies(table) for pid, table in self.tables.items()}

    def delete_segment(self, pid: int, segment_id: int) -> list[Segment]:
        """Free one segment of a process and return its updated table."""
        with self._lock:
            segment = self._slot(pid, segment_id)
            segment.base = 0
            segment.size = 0
            return _copies(self._table(pid))

    def release(self, pid: int) -> None:
        """Drop every segment of a finished process."""
        with self._lock:
            self._table(pid)
            del self.tables[pid]


class Kernel:
    """Creates processes and decides what happens to them when they leave the CPU.

    ``handle_eviction`` returns the context to send back to the CPU when the
    process keeps running, and None otherwise. After F_OPEN of a file nobody
    holds, the process stays running until the file system answers.
    """

    def __init__(
        self,
        config: KernelConfig,
        memory: SegmentMemory,
        files: FileRequests,
        clock: Optional[Clock] = None,
    ):
        self.config = config
        self.memory = memory
        self.requests = files
        self.scheduler = Scheduler(config, clock)
        self.files = FileManager(self.scheduler, files)
        self.resources = build_resources(config.resources, config.resource_instances)
        self.processes: list[Pcb] = []
        self.io_blocked: list[Pcb] = []
        self.next_pid = 1
        self._lock = threading.RLock()

    # ------------------------------------------------------------ processes

    def submit(self, instructions: Sequence[str], console: Any = None) -> Pcb:
        """Create a process in NEW; ``console(pid, reason)`` is told when it ends."""
        with self._lock:
            pid = self.next_pid
            segments = self.memory.new_table(pid)
            pcb = Pcb(
                pid=pid,
                instructions=list(instructions),
                segments=segments,
                console=console,
                burst_estimate=float(self.config.initial_estimate),
            )
            self.next_pid += 1
        self.scheduler.add_new(pcb)
        return pcb

    def admit(self) -> list[Pcb]:
        """Move processes from NEW to READY as the multiprogramming degree allows."""
        admitted = self.scheduler.admit()
        with self._lock:
            self.processes.extend(admitted)
        return admitted

    def dispatch(self) -> Optional[ExecutionContext]:
        """Pick the next process and return the context to run, or None."""
        pcb = self.scheduler.pick_next()
        return None if pcb is None else pcb.context()

    def _running(self) -> Pcb:
        pcb = self.scheduler.running
        if pcb is None:
            raise RuntimeError("no process is running")
        return pcb

    def update_context(self, context: ExecutionContext) -> None:
        """Store the program counter and registers returned by the CPU."""
        pcb = self._running()
        if pcb.pid != context.pid:
            raise ValueError(f"context of process {context.pid} but {pcb.pid} is running")
        log.warning("PID: %d - process evicted", pcb.pid)
        pcb.update_from(context)

    def _resume(self, pcb: Pcb) -> ExecutionContext:
        log.info("process %d goes back to running after its eviction", pcb.pid)
        return pcb.context()

    def kill_running(self, reason: str) -> Pcb:
        """End the running process, free what it held and tell its console."""
        pcb = self._running()
        log.warning("Process %d finished - reason: %s", pcb.pid, reason)
        with self._lock:
            if pcb in self.processes:
                self.processes.remove(pcb)
        release_resources(pcb.assigned_resources)
        pcb.assigned_resources.clear()
        self.memory.release(pcb.pid)
        if callable(pcb.console):
            pcb.console(pcb.pid, reason)
        self.scheduler.release_slot()
        self.scheduler.leave_cpu(pcb)
        return pcb

    # ------------------------------------------------------------------ I/O

    def _sleep_then_finish(self, pcb: Pcb, seconds: int) -> None:
        time.sleep(seconds)
        try:
            self.finish_io(pcb)
        except LookupError:
            pass

    def finish_io(self, pcb: Pcb) -> None:
        """Move a process whose I/O ended back to READY."""
        with self._lock:
            if pcb not in self.io_blocked:
                raise LookupError(f"process {pcb.pid} is not blocked on I/O")
            self.io_blocked.remove(pcb)
        log.warning("PID: %d - previous state: BLOCKED - current state: READY", pcb.pid)
        self.scheduler.send_to_ready(pcb)

    # ------------------------------------------------------------ evictions

    def handle_eviction(
        self, reason: Instruction, params: Sequence[str]
    ) -> Optional[ExecutionContext]:
        """Act on why the running process left the CPU."""
        pcb = self._running()
        log.info("eviction reason is %s", reason.value)

        if reason is Instruction.YIELD:
            self.scheduler.leave_cpu(pcb)
            self.scheduler.send_to_ready(pcb)
            return None
        if reason is Instruction.EXIT:
            self.kill_running("SUCCESS")
            return None
        if reason is Instruction.SEG_FAULT:
            self.kill_running("SEG_FAULT")
            return None
        if reason is Instruction.WAIT:
            return self._wait(pcb, params[0])
        if reason is Instruction.SIGNAL:
            return self._signal(pcb, params[0])
        if reason is Instruction.IO:
            self._start_io(pcb, int(params[0]))
            return None
        if reason is Instruction.CREATE_SEGMENT:
            return self._create_segment(pcb, int(params[0]), int(params[1]))
        if reason is Instruction.DELETE_SEGMENT:
            segment_id = int(params[0])
            log.warning("PID: %d - Delete segment - id: %d", pcb.pid, segment_id)
            pcb.segments = self.memory.delete_segment(pcb.pid, segment_id)
            return self._resume(pcb)
        if reason is Instruction.F_OPEN:
            self.files.open(pcb, params[0])
            return None
        if reason is Instruction.F_CLOSE:
            return self._resume(pcb) if self.files.close(pcb, params[0]) else None
        if reason is Instruction.F_SEEK:
            keep = self.files.seek(pcb, params[0], int(params[1]))
            return self._resume(pcb) if keep else None
        if reason is Instruction.F_READ:
            self.files.read(pcb, params[0], int(params[1]), int(params[2]))
            return None
        if reason is Instruction.F_WRITE:
            self.files.write(pcb, params[0], int(params[1]), int(params[2]))
            return None
        if reason is Instruction.F_TRUNCATE:
            self.files.truncate(pcb, params[0], int(params[1]))
            return None

        log.error("invalid eviction reason %s", reason.value)
        raise ValueError(f"invalid eviction reason {reason.value}")

    def _wait(self, pcb: Pcb, name: str) -> Optional[ExecutionContext]:
        resource = find_resource(self.resources, name)
        if resource is None:
            log.error("resource %r not found", name)
            self.kill_running("RESOURCE_NOT_FOUND")
            return None
        resource.available -= 1
        pcb.assigned_resources.append(resource)
        log.warning(
            "PID: %d - Wait: %s - instances: %d", pcb.pid, resource.name, resource.available
        )
        if resource.available < 0:
            log.warning("PID: %d - previous state: RUNNING - current state: BLOCKED", pcb.pid)
            log.warning("PID: %d - blocked by: %s", pcb.pid, name)
            self.scheduler.leave_cpu(pcb)
            resource.blocked.append(pcb)
            return None
        return self._resume(pcb)

    def _signal(self, pcb: Pcb, name: str) -> Optional[ExecutionContext]:
        resource = find_resource(self.resources, name)
        if resource is None:
            log.error("resource %r not found", name)
            self.kill_running("RESOURCE_NOT_FOUND")
            return None
        resource.available += 1
        if resource in pcb.assigned_resources:
            pcb.assigned_resources.remove(resource)
        log.warning(
            "PID: %d - Signal: %s - instances: %d", pcb.pid, resource.name, resource.available
        )
        if resource.available <= 0 and resource.blocked:
            waiter = resource.blocked.popleft()
            log.warning(
                "PID: %d - previous state: BLOCKED - current state: READY", waiter.pid
            )
            self.scheduler.send_to_ready(waiter)
        return self._resume(pcb)

    def _start_io(self, pcb: Pcb, seconds: int) -> None:
        with self._lock:
            self.io_blocked.append(pcb)
        self.scheduler.leave_cpu(pcb)
        log.warning("PID: %d - previous state: RUNNING - current state: BLOCKED", pcb.pid)
        log.warning("PID: %d - blocked by: I/O - %d", pcb.pid, seconds)
        threading.Thread(
            target=self._sleep_then_finish, args=(pcb, seconds), daemon=True
        ).start()

    def _place_segment(self, pcb: Pcb, segment_id: int, size: int, base: int) -> None:
        segment = find_segment(pcb.segments, segment_id)
        if segment is None:
            segment = Segment(segment_id, base, size)
            pcb.segments.append(segment)
        segment.base = base
        segment.size = size
        log.warning(
            "PID: %d - Create segment - id: %d - size: %d", pcb.pid, segment_id, size
        )

    def _create_segment(
        self, pcb: Pcb, segment_id: int, size: int
    ) -> Optional[ExecutionContext]:
        answer = self.memory.create_segment(pcb.pid, segment_id, size)
        if answer.reply is MemoryReply.OUT_OF_MEMORY:
            self.kill_running("OUT_OF_MEMORY")
            return None
        if answer.reply is MemoryReply.COMPACTION:
            log.warning("Compaction requested")
            while not self.files.io_idle():
                time.sleep(_IO_POLL_SECONDS)
            tables = self.memory.compact()
            with self._lock:
                for pid, table in tables.items():
                    owner = find_by_pid(self.processes, pid)
                    if owner is not None:
                        owner.segments = table
                if find_by_pid(self.processes, pcb.pid) is None and pcb.pid in tables:
                    pcb.segments = tables[pcb.pid]
            log.warning("Compaction finished")
            answer = self.memory.create_segment(pcb.pid, segment_id, size)
            if answer.reply is not MemoryReply.CREATED:
                self.kill_running("OUT_OF_MEMORY")
                return None
        self._place_segment(pcb, segment_id, size, answer.base)
        return self._resume(pcb)