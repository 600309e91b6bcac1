"""Kernel side of file handling: open-file tables and requests to the file system."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import NamedTuple, Optional

from .process import GlobalOpenFile, OpenFile, Pcb, find_by_pid
from .scheduler import Scheduler

log = logging.getLogger(__name__)


class FileRequest(NamedTuple):
    """One request sent to the file system."""

    operation: str
    arguments: tuple


class FileRequests:
    """Outgoing queue of requests for the file system, in the order they were sent."""

    def __init__(self) -> None:
        self.sent: deque[FileRequest] = deque()

    def _send(self, operation: str, *arguments) -> FileRequest:
        request = FileRequest(operation, arguments)
        self.sent.append(request)
        log.debug("sent %s request to the file system: %s", operation, arguments)
        return request

    def open_file(self, name: str) -> FileRequest:
        """Ask whether ``name`` exists."""
        return self._send("open", name)

    def create_file(self, name: str) -> FileRequest:
        """Ask for an empty file called ``name``."""
        return self._send("create", name)

    def truncate(self, name: str, size: int, pid: int) -> FileRequest:
        """Ask to resize ``name`` to ``size`` bytes on behalf of ``pid``."""
        return self._send("truncate", name, size, pid)

    def read(
        self, name: str, address: int, size: int, pid: int, pointer: int
    ) -> FileRequest:
        """Ask to copy ``size`` bytes of ``name`` at ``pointer`` into memory."""
        return self._send("read", name, address, size, pid, pointer)

    def write(
        self, name: str, address: int, size: int, pid: int, pointer: int
    ) -> FileRequest:
        """Ask to copy ``size`` bytes of memory into ``name`` at ``pointer``."""
        return self._send("write", name, address, size, pid, pointer)


class FileManager:
    """Keeps the global open-file table and the processes blocked on file operations.

    The methods that handle a process's instruction return True when the process
    keeps the CPU (possibly after a reply from the file system) and False when it
    leaves the CPU.
    """

    def __init__(self, scheduler: Scheduler, requests: FileRequests):
        self.scheduler = scheduler
        self.requests = requests
        self.global_table: list[GlobalOpenFile] = []
        self.blocked_truncate: list[Pcb] = []
        self.blocked_io: list[Pcb] = []
        self._lock = threading.RLock()

    # ------------------------------------------------------------ helpers

    def _find_global(self, name: str) -> Optional[GlobalOpenFile]:
        wanted = name.lower()
        return next((f for f in self.global_table if f.name.lower() == wanted), None)

    def _block(self, pcb: Pcb, reason: str) -> None:
        log.warning("PID: %d - previous state: RUNNING - current state: BLOCKED", pcb.pid)
        log.warning("PID: %d - blocked by %s", pcb.pid, reason)
        self.scheduler.leave_cpu(pcb)

    def _wake(self, pcb: Pcb) -> None:
        log.warning("PID: %d - previous state: BLOCKED - current state: READY", pcb.pid)
        self.scheduler.send_to_ready(pcb)

    def _not_opened(self, pcb: Pcb) -> bool:
        log.error("file was not opened by process %d", pcb.pid)
        self.scheduler.send_to_ready(pcb)
        self.scheduler.leave_cpu(pcb)
        return False

    def _open_entry(self, pcb: Pcb, name: str) -> OpenFile:
        entry = pcb.find_open_file(name)
        if entry is None:
            raise LookupError(f"file {name!r} is not open by process {pcb.pid}")
        return entry

    # ------------------------------------------------- process instructions

    def open(self, pcb: Pcb, name: str) -> bool:
        """F_OPEN: block behind another holder or ask the file system for the file."""
        log.warning("PID: %d - Open file: %s", pcb.pid, name)
        with self._lock:
            entry = self._find_global(name)
            pcb.open_files.append(OpenFile(name))
            if entry is not None:
                entry.blocked.append(pcb)
        if entry is not None:
            self._block(pcb, f"F_OPEN (file open by another process): {name}")
            return False
        log.info("file %s is not open by another process", name)
        self.requests.open_file(name)
        return True

    def close(self, pcb: Pcb, name: str) -> bool:
        """F_CLOSE: drop the process's entry and hand the file to the next waiter."""
        log.warning("PID: %d - Close file: %s", pcb.pid, name)
        with self._lock:
            entry = pcb.find_open_file(name)
            if entry is None:
                return self._not_opened(pcb)
            pcb.open_files.remove(entry)
            shared = self._find_global(name)
            waiter: Optional[Pcb] = None
            if shared is not None:
                if shared.blocked:
                    waiter = shared.blocked.popleft()
                else:
                    self.global_table.remove(shared)
                    log.debug("global entry of %s removed", name)
        if waiter is not None:
            self._wake(waiter)
        return True

    def seek(self, pcb: Pcb, name: str, position: int) -> bool:
        """F_SEEK: move the process's pointer in an open file."""
        log.warning("PID: %d - Seek file: %s - pointer: %d", pcb.pid, name, position)
        entry = pcb.find_open_file(name)
        if entry is None:
            return self._not_opened(pcb)
        entry.pointer = position
        return True

    def read(self, pcb: Pcb, name: str, address: int, size: int) -> bool:
        """F_READ: send the request and block the process until it is done."""
        entry = self._open_entry(pcb, name)
        log.warning(
            "PID: %d - Read file: %s - pointer: %d - memory: %d - size: %d",
            pcb.pid, name, entry.pointer, address, size,
        )
        self.requests.read(name, address, size, pcb.pid, entry.pointer)
        with self._lock:
            self.blocked_io.append(pcb)
        self._block(pcb, f"F_READ: {name}")
        return False

    def write(self, pcb: Pcb, name: str, address: int, size: int) -> bool:
        """F_WRITE: send the request and block the process until it is done."""
        entry = self._open_entry(pcb, name)
        log.warning(
            "PID: %d - Write file: %s - pointer: %d - memory: %d - size: %d",
            pcb.pid, name, entry.pointer, address, size,
        )
        self.requests.write(name, address, size, pcb.pid, entry.pointer)
        with self._lock:
            self.blocked_io.append(pcb)
        self._block(pcb, f"F_WRITE: {name}")
        return False

    def truncate(self, pcb: Pcb, name: str, size: int) -> bool:
        """F_TRUNCATE: send the request and block the process until it is done."""
        log.warning("PID: %d - File: %s - size: %d", pcb.pid, name, size)
        self.requests.truncate(name, size, pcb.pid)
        with self._lock:
            self.blocked_truncate.append(pcb)
        self._block(pcb, f"F_TRUNCATE: {name}")
        return False

    # ------------------------------------------------ file system replies

    def on_open_response(self, missing: bool, name: str) -> GlobalOpenFile:
        """Record the file as open, asking for its creation first when it is missing."""
        if missing:
            self.requests.create_file(name)
        entry = GlobalOpenFile(name)
        with self._lock:
            self.global_table.append(entry)
        log.debug("global entry of %s added", name)
        return entry

    def _release(self, blocked: list[Pcb], pid: int) -> Pcb:
        with self._lock:
            pcb = find_by_pid(blocked, pid)
            if pcb is None:
                raise LookupError(f"process {pid} is not waiting for the file system")
            blocked.remove(pcb)
            if blocked is self.blocked_io and not blocked:
                log.info("operations between file system and memory finished")
        self._wake(pcb)
        return pcb

    def on_truncate_done(self, pid: int) -> Pcb:
        """Unblock the process whose truncation finished."""
        return self._release(self.blocked_truncate, pid)

    def on_read_done(self, ok: bool, pid: int) -> Optional[Pcb]:
        """Unblock the reader when the read succeeded."""
        if not ok:
            return None
        log.debug("F_READ of process %d finished", pid)
        return self._release(self.blocked_io, pid)

    def on_write_done(self, ok: bool, pid: int) -> Optional[Pcb]:
        """Unblock the writer when the write succeeded."""
        if not ok:
            return None
        log.debug("F_WRITE of process %d finished", pid)
        return self._release(self.blocked_io, pid)

    def io_idle(self) -> bool:
        """True when no read or write between file system and memory is pending."""
        with self._lock:
            return not self.blocked_io