"""Instruction cycle of the CPU."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from .config import CpuConfig
from .instructions import Instruction, decode
from .mmu import Segment, SegmentationFault, translate

log = logging.getLogger(__name__)

_REGISTER_WIDTHS = {
    **{name: 4 for name in ("AX", "BX", "CX", "DX")},
    **{name: 8 for name in ("EAX", "EBX", "ECX", "EDX")},
    **{name: 16 for name in ("RAX", "RBX", "RCX", "RDX")},
}


def register_width(name: str) -> int:
    """Return the width in bytes of register ``name``."""
    try:
        return _REGISTER_WIDTHS[name]
    except KeyError:
        raise ValueError(f"unknown register {name!r}") from None


def _initial_values() -> dict[str, str]:
    return {name: "0" * width for name, width in _REGISTER_WIDTHS.items()}


@dataclass
class Registers:
    """General purpose registers, each holding a fixed number of characters."""

    values: dict[str, str] = field(default_factory=_initial_values)

    def assign(self, name: str, value: str) -> None:
        width = register_width(name)
        self.values[name] = value[:width].ljust(width, "\0")

    def read(self, name: str) -> str:
        register_width(name)
        return self.values[name]

    def copy(self) -> "Registers":
        return Registers(dict(self.values))


class MemoryBus:
    """Flat byte-addressed user memory."""

    def __init__(self, size: int):
        self._data = bytearray(size)

    def _check(self, address: int, size: int) -> None:
        if address < 0 or size < 0 or address + size > len(self._data):
            raise IndexError(f"access of {size} bytes at {address} is out of memory")

    def read(self, address: int, size: int, pid: int) -> str:
        self._check(address, size)
        log.info("PID: %d - read %d bytes at %d", pid, size, address)
        return self._data[address:address + size].decode("latin-1")

    def write(self, address: int, data: str, pid: int) -> str:
        raw = data.encode("latin-1")
        self._check(address, len(raw))
        self._data[address:address + len(raw)] = raw
        log.info("PID: %d - wrote %d bytes at %d", pid, len(raw), address)
        return "OK"


@dataclass
class ExecutionContext:
    """What the CPU needs to run a process."""

    pid: int
    instructions: list[str]
    pc: int = 0
    registers: Registers = field(default_factory=Registers)
    segments: list[Segment] = field(default_factory=list)


@dataclass
class Eviction:
    """Why a process left the CPU and the parameters the kernel needs."""

    reason: Instruction
    params: list[str] = field(default_factory=list)


_ONE_PARAM = {
    Instruction.IO,
    Instruction.WAIT,
    Instruction.SIGNAL,
    Instruction.DELETE_SEGMENT,
    Instruction.F_OPEN,
    Instruction.F_CLOSE,
}
_TWO_PARAMS = {Instruction.CREATE_SEGMENT, Instruction.F_SEEK, Instruction.F_TRUNCATE}


class Cpu:
    """Runs processes until they must be handed back to the kernel."""

    def __init__(self, config: CpuConfig, memory: MemoryBus):
        self.config = config
        self.memory = memory

    def execute(self, context: ExecutionContext) -> Eviction:
        """Fetch, decode and execute until the process is evicted."""
        while True:
            instruction = context.instructions[context.pc]
            words = decode(instruction)
            eviction = self.execute_instruction(words, context)
            context.pc += 1
            if eviction is not None:
                if eviction.reason is Instruction.SEG_FAULT:
                    log.info("PID: %d - %s caused a SEG_FAULT", context.pid, instruction)
                else:
                    log.info("PID: %d - %s handed to the kernel", context.pid, instruction)
                return eviction
            log.info("PID: %d - %s finished", context.pid, instruction)

    def _translate(self, address: str, size: int, context: ExecutionContext):
        return translate(int(address), context.segments, size, self.config.max_segment_size)

    def execute_instruction(
        self, words: list[str], context: ExecutionContext
    ) -> Optional[Eviction]:
        """Execute one decoded instruction; return an Eviction if the process leaves."""
        log.warning("PID: %d - executing %s", context.pid, words[0])
        try:
            op = Instruction.from_mnemonic(words[0])
        except ValueError:
            log.error("unknown instruction %r", words[0])
            return None

        try:
            if op is Instruction.SET:
                time.sleep(self.config.instruction_delay / 1000)
                context.registers.assign(words[1], words[2])
                return None

            if op is Instruction.MOV_IN:
                register = words[1]
                width = register_width(register)
                where = self._translate(words[2], width, context)
                value = self.memory.read(where.physical_address, width, context.pid)
                log.warning(
                    "PID: %d - READ - segment %d - physical %d - value %s",
                    context.pid, where.segment_id, where.physical_address, value,
                )
                context.registers.assign(register, value)
                return None

            if op is Instruction.MOV_OUT:
                register = words[2]
                width = register_width(register)
                where = self._translate(words[1], width, context)
                value = context.registers.read(register)
                reply = self.memory.write(where.physical_address, value, context.pid)
                log.warning(
                    "PID: %d - WRITE - segment %d - physical %d - value %s",
                    context.pid, where.segment_id, where.physical_address, value,
                )
                if reply.upper() == "OK":
                    log.info("memory write succeeded")
                return None

            if op in (Instruction.YIELD, Instruction.EXIT):
                return Eviction(op)

            if op in _ONE_PARAM:
                return Eviction(op, [words[1]])

            if op in _TWO_PARAMS:
                return Eviction(op, [words[1], words[2]])

            if op in (Instruction.F_READ, Instruction.F_WRITE):
                where = self._translate(words[2], int(words[3]), context)
                return Eviction(op, [words[1], str(where.physical_address), words[3]])
        except SegmentationFault:
            return Eviction(Instruction.SEG_FAULT)

        log.error("unknown instruction %r", words[0])
        return None