"""Process control blocks, resources, open-file tables and HRRN arithmetic."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence

from .config import parse_list
from .cpu import ExecutionContext, Registers
from .mmu import Segment

log = logging.getLogger(__name__)


class SchedulingAlgorithm(Enum):
    """Short term scheduling algorithms."""

    FIFO = "FIFO"
    HRRN = "HRRN"

    @classmethod
    def parse(cls, name: str) -> "SchedulingAlgorithm":
        """Return the algorithm called ``name``, ignoring case."""
        wanted = name.strip().upper()
        for algorithm in cls:
            if algorithm.value == wanted:
                return algorithm
        log.error("invalid scheduling algorithm %r", name)
        raise ValueError(f"unknown scheduling algorithm {name!r}")


def _required(properties: Mapping[str, str], key: str) -> str:
    try:
        return properties[key]
    except KeyError:
        raise KeyError(f"missing property {key}") from None


def _required_int(properties: Mapping[str, str], key: str) -> int:
    value = _required(properties, key)
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"property {key} is not an integer: {value!r}") from None


def _required_float(properties: Mapping[str, str], key: str) -> float:
    value = _required(properties, key)
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"property {key} is not a number: {value!r}") from None


@dataclass(frozen=True)
class KernelConfig:
    """Settings of the kernel module."""

    memory_ip: str
    memory_port: int
    filesystem_ip: str
    filesystem_port: int
    cpu_ip: str
    cpu_port: int
    listen_port: int
    algorithm: SchedulingAlgorithm
    initial_estimate: int
    hrrn_alpha: float
    max_multiprogramming: int
    resources: tuple[str, ...]
    resource_instances: tuple[str, ...]

    @classmethod
    def from_properties(cls, properties: Mapping[str, str]) -> "KernelConfig":
        return cls(
            memory_ip=_required(properties, "IP_MEMORIA"),
            memory_port=_required_int(properties, "PUERTO_MEMORIA"),
            filesystem_ip=_required(properties, "IP_FILESYSTEM"),
            filesystem_port=_required_int(properties, "PUERTO_FILESYSTEM"),
            cpu_ip=_required(properties, "IP_CPU"),
            cpu_port=_required_int(properties, "PUERTO_CPU"),
            listen_port=_required_int(properties, "PUERTO_ESCUCHA"),
            algorithm=SchedulingAlgorithm.parse(
                _required(properties, "ALGORITMO_PLANIFICACION")
            ),
            initial_estimate=_required_int(properties, "ESTIMACION_INICIAL"),
            hrrn_alpha=_required_float(properties, "HRRN_ALFA"),
            max_multiprogramming=_required_int(properties, "GRADO_MAX_MULTIPROGRAMACION"),
            resources=tuple(parse_list(_required(properties, "RECURSOS"))),
            resource_instances=tuple(
                parse_list(_required(properties, "INSTANCIAS_RECURSOS"))
            ),
        )


@dataclass(eq=False)
class Resource:
    """A shared resource with its free instances and the processes waiting on it."""

    name: str
    available: int
    blocked: deque = field(default_factory=deque)


def build_resources(names: Sequence[str], instances: Sequence[str]) -> list[Resource]:
    """Create one resource per name with the matching instance count."""
    if len(names) != len(instances):
        raise ValueError(
            f"{len(names)} resources but {len(instances)} instance counts"
        )
    return [Resource(name, int(count)) for name, count in zip(names, instances)]


def find_resource(resources: Iterable[Resource], name: str) -> Optional[Resource]:
    """Return the resource called ``name`` ignoring case, or None."""
    wanted = name.lower()
    return next((res for res in resources if res.name.lower() == wanted), None)


def release_resources(assigned: Iterable[Resource]) -> None:
    """Give back one instance of every resource in ``assigned``."""
    for resource in assigned:
        resource.available += 1


@dataclass(eq=False)
class OpenFile:
    """Entry of a process's open-file table."""

    name: str
    pointer: int = 0


@dataclass(eq=False)
class GlobalOpenFile:
    """Entry of the global open-file table."""

    name: str
    is_open: bool = True
    blocked: deque = field(default_factory=deque)


def initial_registers() -> Registers:
    """Registers of a new process: every register filled with zeros."""
    return Registers()


@dataclass(eq=False)
class Pcb:
    """Process control block."""

    pid: int
    instructions: list[str]
    segments: list[Segment] = field(default_factory=list)
    console: Any = None
    pc: int = 0
    registers: Registers = field(default_factory=initial_registers)
    assigned_resources: list[Resource] = field(default_factory=list)
    open_files: list[OpenFile] = field(default_factory=list)
    burst_estimate: float = 0.0
    ready_since: float = 0.0
    running_since: float = 0.0
    left_running_at: float = 0.0
    response_ratio: float = 0.0

    def context(self) -> ExecutionContext:
        """Execution context to hand to the CPU, detached from this PCB."""
        return ExecutionContext(
            pid=self.pid,
            instructions=list(self.instructions),
            pc=self.pc,
            registers=self.registers.copy(),
            segments=[replace(segment) for segment in self.segments],
        )

    def update_from(self, context: ExecutionContext) -> None:
        """Take the program counter and registers from a returned context."""
        self.pc = context.pc
        self.registers = context.registers.copy()

    def find_open_file(self, name: str) -> Optional[OpenFile]:
        """Return this process's entry for ``name`` ignoring case, or None."""
        wanted = name.lower()
        return next((f for f in self.open_files if f.name.lower() == wanted), None)


def find_by_pid(processes: Iterable[Pcb], pid: int) -> Optional[Pcb]:
    """Return the process with ``pid``, or None."""
    return next((pcb for pcb in processes if pcb.pid == pid), None)


def remove_process(processes: list[Pcb], pcb: Pcb) -> Optional[Pcb]:
    """Remove and return the process with the same pid as ``pcb``, or None."""
    found = find_by_pid(processes, pcb.pid)
    if found is not None:
        processes.remove(found)
    return found


def update_response_ratios(ready: Iterable[Pcb], now: float) -> None:
    """Set the response ratio of every ready process at time ``now``."""
    for pcb in ready:
        waited = now - pcb.ready_since
        pcb.response_ratio = 1 + waited / pcb.burst_estimate


def highest_response_ratio(ready: Iterable[Pcb]) -> Pcb:
    """Return the process with the highest response ratio; the first wins ties."""
    best: Optional[Pcb] = None
    for pcb in ready:
        if best is None or pcb.response_ratio > best.response_ratio:
            best = pcb
    if best is None:
        raise ValueError("no process is ready")
    return best


def estimate_next_burst(pcb: Pcb, alpha: float) -> float:
    """Update and return the exponential average estimate of the next burst."""
    burst = pcb.left_running_at - pcb.running_since
    pcb.burst_estimate = alpha * burst + (1 - alpha) * pcb.burst_estimate
    return pcb.burst_estimate