"""Instruction set and parsing of instruction files."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Iterable, Union


class Instruction(Enum):
    """Instructions a process may execute, plus the segmentation fault reason."""

    SET = "SET"
    MOV_IN = "MOV_IN"
    MOV_OUT = "MOV_OUT"
    IO = "IO"
    F_OPEN = "F_OPEN"
    F_CLOSE = "F_CLOSE"
    F_SEEK = "F_SEEK"
    F_READ = "F_READ"
    F_WRITE = "F_WRITE"
    F_TRUNCATE = "F_TRUNCATE"
    WAIT = "WAIT"
    SIGNAL = "SIGNAL"
    CREATE_SEGMENT = "CREATE_SEGMENT"
    DELETE_SEGMENT = "DELETE_SEGMENT"
    YIELD = "YIELD"
    EXIT = "EXIT"
    SEG_FAULT = "SEG_FAULT"

    @classmethod
    def from_mnemonic(cls, mnemonic: str) -> "Instruction":
        """Return the instruction named by ``mnemonic`` (case sensitive)."""
        try:
            instruction = cls(mnemonic)
        except ValueError:
            raise ValueError(f"unknown instruction {mnemonic!r}") from None
        if instruction is cls.SEG_FAULT:
            raise ValueError(f"unknown instruction {mnemonic!r}")
        return instruction


def parse_instruction_lines(lines: Iterable[str]) -> list[str]:
    """Keep the lines that hold an instruction, without their line break.

    Lines that are empty or start with a newline or a space are skipped.
    """
    instructions = []
    for line in lines:
        if not line or line[0] in "\n ":
            continue
        instructions.append(line.split("\n", 1)[0])
    return instructions


def load_instructions(path: Union[str, Path]) -> list[str]:
    """Read the instructions of a program file."""
    with open(path, encoding="utf-8") as handle:
        return parse_instruction_lines(handle)


def decode(instruction: str) -> list[str]:
    """Split an instruction into its mnemonic and parameters."""
    return instruction.split(" ")