# minios

`minios` is a small operating system simulator for teaching. It models the
parts of a multi-module system as plain Python objects that you wire together
in one process:

- **Programs** – one instruction per line (`SET AX HOLA`, `MOV_IN BX 24`,
  `F_OPEN notes`, `EXIT`, ...).
- **CPU** – a fetch/decode/execute loop with fixed-width registers
  (`AX`..`DX` 4 bytes, `EAX`..`EDX` 8 bytes, `RAX`..`RDX` 16 bytes) and a
  segmented MMU that raises `SegmentationFault` on an out-of-bounds access.
- **Kernel** – process control blocks, FIFO and HRRN short-term scheduling,
  a bounded degree of multiprogramming, counted resources (`WAIT`/`SIGNAL`),
  timed I/O, segment creation and deletion with compaction, and a global
  table of open files.
- **File system** – a superblock, a block bitmap and a block file (both
  memory-mapped), with one direct and one indirect pointer block per file;
  open, create, truncate (grow and shrink), read and write.

The package has no third-party dependencies.

## Modules

| Module                | What it holds                                                             |
|-----------------------|---------------------------------------------------------------------------|
| `minios.config`       | `parse_properties`, `load_properties`, `save_properties`, `parse_list`, `CpuConfig` |
| `minios.instructions` | `Instruction`, `parse_instruction_lines`, `load_instructions`, `decode`   |
| `minios.mmu`          | `Segment`, `SegmentationFault`, `Translation`, `find_segment`, `translate` |
| `minios.cpu`          | `Registers`, `register_width`, `MemoryBus`, `ExecutionContext`, `Eviction`, `Cpu` |
| `minios.blockstore`   | `Superblock`, `FileControlBlock`, `BlockStore` and FCB directory helpers  |
| `minios.filesystem`   | `FileSystemConfig` and the `FileSystem` service                           |
| `minios.process`      | `KernelConfig`, `SchedulingAlgorithm`, `Pcb`, `Resource`, open-file entries, HRRN arithmetic |
| `minios.scheduler`    | `Clock` and `Scheduler` (NEW, READY and RUNNING)                          |
| `minios.kernel_files` | `FileRequests` and `FileManager`: open-file tables and file requests      |
| `minios.kernel`       | `SegmentMemory` and `Kernel`: admission, dispatch and eviction handling   |

## Programs and configuration

```python
from minios.instructions import Instruction, decode, parse_instruction_lines
from minios.config import parse_properties, parse_list

program = parse_instruction_lines(["SET AX HOLA\n", "\n", " YIELD\n", "EXIT\n"])
# ['SET AX HOLA', 'EXIT'] - empty lines and lines starting with a space are skipped

decode("MOV_OUT 24 AX")                 # ['MOV_OUT', '24', 'AX']
Instruction.from_mnemonic("F_TRUNCATE") # Instruction.F_TRUNCATE

props = parse_properties("RECURSOS=[DISCO,RED]\n# comment\nINSTANCIAS_RECURSOS=[1,2]\n")
parse_list(props["RECURSOS"])           # ['DISCO', 'RED']
```

`load_instructions(path)` and `load_properties(path)` read the same formats
from files.

## Running a process

```python
from minios.config import CpuConfig, parse_properties
from minios.cpu import Cpu, MemoryBus
from minios.kernel import Kernel, SegmentMemory
from minios.kernel_files import FileRequests
from minios.process import KernelConfig

kernel_config = KernelConfig.from_properties(parse_properties("""
IP_MEMORIA=127.0.0.1
PUERTO_MEMORIA=8002
IP_FILESYSTEM=127.0.0.1
PUERTO_FILESYSTEM=8003
IP_CPU=127.0.0.1
PUERTO_CPU=8001
PUERTO_ESCUCHA=8000
ALGORITMO_PLANIFICACION=FIFO
ESTIMACION_INICIAL=10000
HRRN_ALFA=0.5
GRADO_MAX_MULTIPROGRAMACION=4
RECURSOS=[DISCO]
INSTANCIAS_RECURSOS=[1]
"""))

memory = SegmentMemory(size=4096, segment_zero_size=128, segment_count=16)
kernel = Kernel(kernel_config, memory, FileRequests())
cpu = Cpu(CpuConfig(0, "127.0.0.1", 8002, 8001, 64), MemoryBus(4096))

kernel.submit(["SET AX HOLA", "EXIT"], console=lambda pid, reason: print(pid, reason))
kernel.admit()                      # NEW -> READY
context = kernel.dispatch()         # READY -> RUNNING
eviction = cpu.execute(context)     # runs until EXIT
kernel.update_context(context)
kernel.handle_eviction(eviction.reason, eviction.params)   # prints "1 SUCCESS"
```

`handle_eviction` returns the context to send back to the CPU when the
process keeps running (for example after a granted `WAIT`, a `SIGNAL`,
`CREATE_SEGMENT` or `F_SEEK`), and `None` when it leaves the CPU.

## File system

```python
from minios.blockstore import BlockStore, Superblock
from minios.cpu import MemoryBus
from minios.filesystem import FileSystem

superblock = Superblock(block_count=64, block_size=16)
with BlockStore.open("bitmap.dat", "bloques.dat", superblock) as store:
    fs = FileSystem(store, "fcb", MemoryBus(1024))   # the "fcb" directory must exist
    if not fs.open_file("notes"):
        fs.create_file("notes")
    fs.truncate("notes", 40)
```

`read_file` and `write_file` copy bytes between a file (at a file pointer)
and the memory object given to `FileSystem`.

## What the package does not do

- There are no network servers or protocol: the CPU, kernel, memory and file
  system are objects you call directly in one process. The address and port
  settings in `CpuConfig`, `KernelConfig` and `FileSystemConfig` are read
  but not used to connect anywhere.
- There are no command-line programs.
- `FileRequests` records the requests the kernel would send to the file system
  in its `sent` queue; delivering them to a `FileSystem` and reporting the
  outcome back through `FileManager.on_open_response`, `on_truncate_done`,
  `on_read_done` and `on_write_done` is up to the caller.
- The kernel has no scheduling loop of its own: call `admit`, `dispatch` and
  `handle_eviction` in the order you want events to happen.

## Running the tests

Install the `test` extra and run `pytest`.