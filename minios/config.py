"""Reading and writing KEY=VALUE property files and the CPU settings."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Tuple, Union

PathLike = Union[str, Path]


def parse_properties(text: str) -> dict[str, str]:
    """Parse KEY=VALUE lines, skipping blank lines and '#' comments."""
    properties: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        properties[key.strip()] = value.strip()
    return properties


def load_properties(path: PathLike) -> dict[str, str]:
    """Read a property file from disk."""
    return parse_properties(Path(path).read_text(encoding="utf-8"))


def save_properties(properties: Mapping[str, object], path: PathLike) -> None:
    """Write properties to disk, one KEY=VALUE per line."""
    lines = _format_lines(properties.items())
    Path(path).write_text("".join(lines), encoding="utf-8")


def _format_lines(items: Iterable[Tuple[str, object]]) -> list[str]:
    return [f"{key}={value}\n" for key, value in items]


def parse_list(value: str) -> list[str]:
    """Parse a bracketed, comma separated list such as ``[DISCO, RED]``."""
    text = value.strip()
    if not (text.startswith("[") and text.endswith("]")):
        raise ValueError(f"not a bracketed list: {value!r}")
    body = text[1:-1].strip()
    if not body:
        return []
    return [item.strip() for item in body.split(",")]


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


@dataclass(frozen=True)
class CpuConfig:
    """Settings of the CPU module."""

    instruction_delay: int
    memory_ip: str
    memory_port: int
    listen_port: int
    max_segment_size: int

    @classmethod
    def from_properties(cls, properties: Mapping[str, str]) -> "CpuConfig":
        return cls(
            instruction_delay=_required_int(properties, "RETARDO_INSTRUCCION"),
            memory_ip=_required(properties, "IP_MEMORIA"),
            memory_port=_required_int(properties, "PUERTO_MEMORIA"),
            listen_port=_required_int(properties, "PUERTO_ESCUCHA"),
            max_segment_size=_required_int(properties, "TAM_MAX_SEGMENTO"),
        )