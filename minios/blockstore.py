"""Block storage of the file system: bitmap, block file and file control blocks."""

from __future__ import annotations

import errno
import logging
import mmap
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable, Mapping, Optional, Union

from .config import load_properties, save_properties

log = logging.getLogger(__name__)

PathLike = Union[str, Path]

POINTER_SIZE = 4
_POINTER = struct.Struct("<I")


def _blocks_for(size: int, block_size: int) -> int:
    return max(0, -(-size // block_size))


@dataclass(frozen=True)
class Superblock:
    """Geometry of the block device."""

    block_count: int
    block_size: int

    @classmethod
    def from_properties(cls, properties: Mapping[str, str]) -> "Superblock":
        try:
            return cls(
                block_count=int(properties["BLOCK_COUNT"]),
                block_size=int(properties["BLOCK_SIZE"]),
            )
        except KeyError as exc:
            raise KeyError(f"missing property {exc.args[0]}") from None

    @property
    def blocks_file_size(self) -> int:
        return self.block_count * self.block_size

    @property
    def bitmap_file_size(self) -> int:
        return (self.block_count + 7) // 8


@dataclass
class FileControlBlock:
    """Directory entry of one file."""

    name: str
    size: int = 0
    direct_pointer: int = -1
    indirect_pointer: int = -1

    @classmethod
    def load(cls, path: PathLike) -> "FileControlBlock":
        properties = load_properties(path)
        try:
            return cls(
                name=properties["NOMBRE_ARCHIVO"],
                size=int(properties["TAMANIO_ARCHIVO"]),
                direct_pointer=int(properties["PUNTERO_DIRECTO"]),
                indirect_pointer=int(properties["PUNTERO_INDIRECTO"]),
            )
        except KeyError as exc:
            raise KeyError(f"{path}: missing property {exc.args[0]}") from None

    def save(self, path: PathLike) -> None:
        save_properties(
            {
                "NOMBRE_ARCHIVO": self.name,
                "TAMANIO_ARCHIVO": self.size,
                "PUNTERO_DIRECTO": self.direct_pointer,
                "PUNTERO_INDIRECTO": self.indirect_pointer,
            },
            path,
        )

    def block_count(self, block_size: int) -> int:
        """Number of data blocks the file occupies."""
        return _blocks_for(self.size, block_size)


def load_fcb_directory(directory: PathLike) -> list[FileControlBlock]:
    """Load every FCB file (names containing ``.dat``) in ``directory``."""
    paths = sorted(
        path for path in Path(directory).iterdir()
        if ".dat" in path.name and path.is_file()
    )
    fcbs = []
    for path in paths:
        fcb = FileControlBlock.load(path)
        log.debug(
            "loaded FCB %s - size %d - direct %d - indirect %d",
            fcb.name, fcb.size, fcb.direct_pointer, fcb.indirect_pointer,
        )
        fcbs.append(fcb)
    return fcbs


def find_fcb(fcbs: Iterable[FileControlBlock], name: str) -> Optional[FileControlBlock]:
    """Return the FCB whose name matches ``name`` ignoring case, or None."""
    wanted = name.lower()
    return next((fcb for fcb in fcbs if fcb.name.lower() == wanted), None)


def create_fcb_entry(directory: PathLike, name: str) -> FileControlBlock:
    """Append the entry of a new empty file to ``directory/<name>.dat``."""
    fcb = FileControlBlock(name)
    path = Path(directory) / f"{name}.dat"
    with open(path, "a", encoding="utf-8") as handle:
        handle.write(f"NOMBRE_ARCHIVO={name}\n")
        handle.write("TAMANIO_ARCHIVO=0\n")
        handle.write("PUNTERO_DIRECTO=-1\n")
        handle.write("PUNTERO_INDIRECTO=-1\n")
    return fcb


def _open_mapped(path: PathLike, size: int) -> tuple[BinaryIO, mmap.mmap]:
    path = Path(path)
    if path.exists():
        handle = open(path, "r+b")
        current = path.stat().st_size
        if current < size:
            handle.truncate(size)
    else:
        handle = open(path, "w+b")
        handle.truncate(size)
    handle.flush()
    length = max(size, Path(path).stat().st_size)
    if length == 0:
        handle.close()
        raise ValueError(f"{path}: cannot map an empty file")
    try:
        mapped = mmap.mmap(handle.fileno(), length)
    except (OSError, ValueError):
        handle.close()
        raise
    return handle, mapped


class BlockStore:
    """The bitmap and block file, mapped into memory."""

    def __init__(
        self,
        superblock: Superblock,
        bitmap_file: BinaryIO,
        bitmap: mmap.mmap,
        blocks_file: BinaryIO,
        blocks: mmap.mmap,
    ):
        self.superblock = superblock
        self._bitmap_file = bitmap_file
        self._bitmap = bitmap
        self._blocks_file = blocks_file
        self._blocks = blocks
        self._closed = False

    @classmethod
    def open(
        cls, bitmap_path: PathLike, blocks_path: PathLike, superblock: Superblock
    ) -> "BlockStore":
        """Open (creating when missing) the bitmap and block files."""
        bitmap_file, bitmap = _open_mapped(bitmap_path, superblock.bitmap_file_size)
        try:
            blocks_file, blocks = _open_mapped(blocks_path, superblock.blocks_file_size)
        except Exception:
            bitmap.close()
            bitmap_file.close()
            raise
        return cls(superblock, bitmap_file, bitmap, blocks_file, blocks)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for mapped, handle in (
            (self._bitmap, self._bitmap_file),
            (self._blocks, self._blocks_file),
        ):
            mapped.flush()
            mapped.close()
            handle.close()

    def __enter__(self) -> "BlockStore":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # ---------------------------------------------------------------- bitmap

    def _check_block(self, block: int) -> None:
        if not 0 <= block < self.superblock.block_count:
            raise IndexError(f"block {block} is out of range")

    def is_used(self, block: int) -> bool:
        self._check_block(block)
        return bool(self._bitmap[block >> 3] & (1 << (block & 7)))

    def _log_access(self, block: int) -> None:
        log.warning("Bitmap access - block %d - state %d", block, int(self.is_used(block)))

    def mark_used(self, block: int) -> None:
        self._log_access(block)
        self._bitmap[block >> 3] |= 1 << (block & 7)
        self._bitmap.flush()

    def mark_free(self, block: int) -> None:
        self._log_access(block)
        self._bitmap[block >> 3] &= ~(1 << (block & 7)) & 0xFF
        self._bitmap.flush()

    def next_free_block(self) -> int:
        """Return the lowest free block; raise OSError(ENOSPC) when none is left."""
        for block in range(self.superblock.block_count):
            if not self.is_used(block):
                log.debug("next free block is %d", block)
                return block
        raise OSError(errno.ENOSPC, "no free block left")

    def bitmap(self) -> list[bool]:
        """State of every block, True meaning used."""
        return [self.is_used(block) for block in range(self.superblock.block_count)]

    def _allocate(self) -> int:
        block = self.next_free_block()
        self.mark_used(block)
        return block

    # ---------------------------------------------------------------- blocks

    def _check_range(self, position: int, size: int) -> None:
        if position < 0 or size < 0 or position + size > self.superblock.blocks_file_size:
            raise IndexError(f"{size} bytes at {position} are outside the block file")

    def pointer_at(self, position: int) -> int:
        """Read the 32-bit block pointer stored at byte ``position``."""
        self._check_range(position, POINTER_SIZE)
        return _POINTER.unpack_from(self._blocks, position)[0]

    def set_pointer(self, position: int, value: int) -> None:
        self._check_range(position, POINTER_SIZE)
        _POINTER.pack_into(self._blocks, position, value)
        self._blocks.flush()

    def write_block(self, block: int, data: bytes) -> None:
        """Write ``data`` at the start of ``block``."""
        self._check_block(block)
        if len(data) > self.superblock.block_size:
            raise ValueError(
                f"{len(data)} bytes do not fit in a block of {self.superblock.block_size}"
            )
        start = block * self.superblock.block_size
        self._blocks[start:start + len(data)] = data
        self._blocks.flush()

    def read_block(self, block: int, size: int) -> bytes:
        """Read ``size`` bytes from the start of ``block``."""
        self._check_block(block)
        if not 0 <= size <= self.superblock.block_size:
            raise ValueError(f"cannot read {size} bytes from one block")
        start = block * self.superblock.block_size
        return bytes(self._blocks[start:start + size])

    # ------------------------------------------------------------ truncation

    def last_pointer_position(self, fcb: FileControlBlock) -> int:
        """Byte position of the last pointer stored in the file's indirect block."""
        base = fcb.indirect_pointer * self.superblock.block_size
        end = base + self.superblock.block_size
        offset = 0
        while base + offset < end and self.pointer_at(base + offset) != 0:
            offset += POINTER_SIZE
        return base + offset - POINTER_SIZE

    def grow(self, fcb: FileControlBlock, new_size: int) -> None:
        """Assign blocks so that ``fcb`` can hold ``new_size`` bytes."""
        block_size = self.superblock.block_size
        wanted = _blocks_for(new_size, block_size)
        missing = wanted - fcb.block_count(block_size)

        if fcb.direct_pointer == -1 and wanted > 0:
            fcb.direct_pointer = self._allocate()
            missing -= 1

        if fcb.indirect_pointer == -1 and wanted > 1:
            fcb.indirect_pointer = self._allocate()
            log.debug("indirect pointer block is %d", fcb.indirect_pointer)

        if missing > 0:
            base = fcb.indirect_pointer * block_size
            end = base + block_size
            offset = 0
            for _ in range(missing):
                block = self._allocate()
                while base + offset < end and self.pointer_at(base + offset) != 0:
                    offset += POINTER_SIZE
                if base + offset >= end:
                    self.mark_free(block)
                    raise OSError(errno.EFBIG, f"file {fcb.name} cannot hold more blocks")
                log.debug(
                    "writing pointer %d in indirect block %d at %d",
                    block, fcb.indirect_pointer, base + offset,
                )
                self.set_pointer(base + offset, block)
                offset += POINTER_SIZE

        fcb.size = new_size

    def shrink(self, fcb: FileControlBlock, new_size: int) -> None:
        """Release the blocks ``fcb`` no longer needs at ``new_size`` bytes.

        Truncating to zero also frees the direct block and clears the direct pointer.
        """
        block_size = self.superblock.block_size
        to_remove = fcb.block_count(block_size) - _blocks_for(new_size, block_size)

        if new_size == 0 and fcb.direct_pointer != -1:
            self.mark_free(fcb.direct_pointer)
            fcb.direct_pointer = -1
            to_remove -= 1

        if fcb.indirect_pointer != -1 and to_remove > 0:
            position = self.last_pointer_position(fcb)
            log.debug("last pointer of the indirect block is at %d", position)
            for _ in range(to_remove):
                block = self.pointer_at(position)
                log.debug("releasing block %d", block)
                self.mark_free(block)
                self.set_pointer(position, 0)
                position -= POINTER_SIZE

        fcb.size = new_size