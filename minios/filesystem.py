"""File system service: opening, creating, truncating, reading and writing files."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Mapping, Optional, Protocol, Tuple, Union

from .blockstore import (
    POINTER_SIZE,
    BlockStore,
    FileControlBlock,
    create_fcb_entry,
    find_fcb,
    load_fcb_directory,
)

log = logging.getLogger(__name__)

PathLike = Union[str, Path]


class _Memory(Protocol):
    def read(self, address: int, size: int, pid: int) -> str: ...

    def write(self, address: int, data: str, pid: int) -> str: ...


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
class FileSystemConfig:
    """Settings of the file system module."""

    memory_ip: str
    memory_port: int
    listen_port: int
    superblock_path: str
    bitmap_path: str
    blocks_path: str
    fcb_path: str
    block_delay: int

    @classmethod
    def from_properties(cls, properties: Mapping[str, str]) -> "FileSystemConfig":
        return cls(
            memory_ip=_required(properties, "IP_MEMORIA"),
            memory_port=_required_int(properties, "PUERTO_MEMORIA"),
            listen_port=_required_int(properties, "PUERTO_ESCUCHA"),
            superblock_path=_required(properties, "PATH_SUPERBLOQUE"),
            bitmap_path=_required(properties, "PATH_BITMAP"),
            blocks_path=_required(properties, "PATH_BLOQUES"),
            fcb_path=_required(properties, "PATH_FCB"),
            block_delay=_required_int(properties, "RETARDO_ACCESO_BLOQUE"),
        )


class FileSystem:
    """Serves file requests over a block store and a directory of FCBs."""

    def __init__(
        self,
        store: BlockStore,
        fcb_directory: PathLike,
        memory: _Memory,
        block_delay: int = 0,
    ):
        self.store = store
        self.fcb_directory = Path(fcb_directory)
        self.memory = memory
        self.block_delay = block_delay
        self.fcbs: list[FileControlBlock] = load_fcb_directory(self.fcb_directory)

    # ------------------------------------------------------------ helpers

    def _delay(self) -> None:
        if self.block_delay > 0:
            time.sleep(self.block_delay / 1000)

    def _get(self, name: str) -> FileControlBlock:
        fcb = find_fcb(self.fcbs, name)
        if fcb is None:
            raise FileNotFoundError(f"file {name!r} does not exist")
        return fcb

    def _save(self, fcb: FileControlBlock) -> None:
        fcb.save(self.fcb_directory / f"{fcb.name}.dat")

    # ----------------------------------------------------------- requests

    def open_file(self, name: str) -> bool:
        """Return True when the file exists."""
        log.warning("Open file: %s", name)
        exists = find_fcb(self.fcbs, name) is not None
        log.debug("file %s %s", name, "exists" if exists else "does not exist")
        return exists

    def create_file(self, name: str) -> FileControlBlock:
        """Create an empty file and its directory entry."""
        log.warning("Create file: %s", name)
        fcb = create_fcb_entry(self.fcb_directory, name)
        self.fcbs.append(fcb)
        return fcb

    def truncate(self, name: str, size: int) -> FileControlBlock:
        """Grow or shrink a file to ``size`` bytes and save its entry."""
        log.warning("Truncate file: %s - size: %d", name, size)
        if size < 0:
            raise ValueError(f"invalid size {size}")
        fcb = self._get(name)
        if fcb.size == size:
            log.info("file %s already has size %d", name, size)
            return fcb
        if fcb.size > size:
            self.store.shrink(fcb, size)
        else:
            self.store.grow(fcb, size)
        self._save(fcb)
        return fcb

    def locate_block(self, fcb: FileControlBlock, pointer: int) -> int:
        """Return the device block that holds byte ``pointer`` of the file."""
        block_size = self.store.superblock.block_size
        if pointer < 0:
            raise ValueError(f"invalid file pointer {pointer}")
        index = pointer // block_size
        if index >= fcb.block_count(block_size) or fcb.direct_pointer == -1:
            raise ValueError(
                f"pointer {pointer} is beyond the blocks of file {fcb.name}"
            )
        if index == 0:
            block = fcb.direct_pointer
        else:
            position = fcb.indirect_pointer * block_size + (index - 1) * POINTER_SIZE
            block = self.store.pointer_at(position)
        log.warning(
            "Block access - file: %s - file block: %d - device block: %d",
            fcb.name, index, block,
        )
        return block

    def _chunks(
        self, fcb: FileControlBlock, pointer: int, size: int
    ) -> Iterator[Tuple[int, int, int]]:
        """Yield (block, start within block, length) covering the byte range."""
        block_size = self.store.superblock.block_size
        indirect_seen = False
        remaining = size
        while remaining > 0:
            if pointer >= block_size and not indirect_seen:
                log.warning(
                    "Pointer block access - file: %s - device block: %d",
                    fcb.name, fcb.indirect_pointer,
                )
                self._delay()
                indirect_seen = True
            block = self.locate_block(fcb, pointer)
            start = pointer % block_size
            length = min(remaining, block_size - start)
            yield block, start, length
            self._delay()
            pointer += length
            remaining -= length

    def read_file(
        self, name: str, address: int, size: int, pid: int, pointer: int
    ) -> str:
        """Read ``size`` bytes at ``pointer`` and store them in memory at ``address``."""
        log.warning(
            "Read file: %s - pointer: %d - memory: %d - size: %d",
            name, pointer, address, size,
        )
        fcb = self._get(name)
        data = bytearray()
        for block, start, length in self._chunks(fcb, pointer, size):
            data += self.store.read_block(block, start + length)[start:]
        text = bytes(data).decode("latin-1")
        log.info("data read from disk: %s", text)
        reply = self.memory.write(address, text, pid)
        if reply.upper() == "OK":
            log.info("file read succeeded")
        return text

    def write_file(
        self, name: str, address: int, size: int, pid: int, pointer: int
    ) -> str:
        """Copy ``size`` bytes from memory at ``address`` into the file at ``pointer``."""
        log.warning(
            "Write file: %s - pointer: %d - memory: %d - size: %d",
            name, pointer, address, size,
        )
        fcb = self._get(name)
        text = self.memory.read(address, size, pid)
        data = text.encode("latin-1")
        offset = 0
        for block, start, length in self._chunks(fcb, pointer, size):
            chunk = data[offset:offset + length]
            prefix: Optional[bytes] = self.store.read_block(block, start) if start else b""
            self.store.write_block(block, prefix + chunk)
            offset += length
        log.info("data written to disk: %s", text)
        return text