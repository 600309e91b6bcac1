import pytest

from minios.instructions import Instruction
from minios.kernel import Kernel, MemoryReply, SegmentMemory
from minios.kernel_files import FileRequests
from minios.mmu import find_segment
from minios.process import KernelConfig, SchedulingAlgorithm, find_resource
from minios.scheduler import Clock


def make_config(max_mp=2, resources=("DISCO",), instances=("1",)):
    return KernelConfig(
        memory_ip="127.0.0.1",
        memory_port=8002,
        filesystem_ip="127.0.0.1",
        filesystem_port=8003,
        cpu_ip="127.0.0.1",
        cpu_port=8001,
        listen_port=8000,
        algorithm=SchedulingAlgorithm.FIFO,
        initial_estimate=10000,
        hrrn_alpha=0.5,
        max_multiprogramming=max_mp,
        resources=resources,
        resource_instances=instances,
    )


def make_kernel(max_mp=2, memory_size=100, seg0=20, count=3):
    memory = SegmentMemory(memory_size, seg0, count)
    kernel = Kernel(make_config(max_mp), memory, FileRequests(), Clock(lambda: 0.0))
    return kernel


def run_one(kernel, console=None):
    pcb = kernel.submit(["SET AX 1", "EXIT"], console)
    kernel.admit()
    context = kernel.dispatch()
    return pcb, context


# ------------------------------------------------------------ SegmentMemory


def test_new_table_has_shared_segment_zero_and_empty_slots():
    memory = SegmentMemory(100, 20, 4)
    table = memory.new_table(1)
    assert [seg.id for seg in table] == [0, 1, 2, 3]
    assert table[0].size == 20 and table[0].base == 0
    assert all(seg.size == 0 for seg in table[1:])


def test_new_table_twice_for_same_pid_fails():
    memory = SegmentMemory(100, 20, 2)
    memory.new_table(1)
    with pytest.raises(ValueError):
        memory.new_table(1)


def test_create_segment_first_fit_after_segment_zero():
    memory = SegmentMemory(100, 20, 3)
    memory.new_table(1)
    answer = memory.create_segment(1, 1, 30)
    assert answer.reply is MemoryReply.CREATED
    assert answer.base == 20


def test_create_segment_out_of_memory():
    memory = SegmentMemory(100, 20, 3)
    memory.new_table(1)
    assert memory.create_segment(1, 1, 81).reply is MemoryReply.OUT_OF_MEMORY


def test_fragmented_memory_asks_for_compaction_then_fits():
    memory = SegmentMemory(100, 20, 3)
    memory.new_table(1)
    memory.create_segment(1, 1, 30)
    second = memory.create_segment(1, 2, 30)
    memory.delete_segment(1, 1)
    assert memory.create_segment(1, 1, 40).reply is MemoryReply.COMPACTION
    tables = memory.compact()
    moved = find_segment(tables[1], 2)
    assert moved.base == 20
    assert moved.base < second.base
    answer = memory.create_segment(1, 1, 40)
    assert answer.reply is MemoryReply.CREATED
    assert answer.base == moved.base + moved.size


def test_segment_zero_cannot_be_deleted():
    memory = SegmentMemory(100, 20, 3)
    memory.new_table(1)
    with pytest.raises(ValueError):
        memory.delete_segment(1, 0)


def test_release_removes_table():
    memory = SegmentMemory(100, 20, 3)
    memory.new_table(5)
    memory.release(5)
    assert 5 not in memory.tables
    with pytest.raises(KeyError):
        memory.release(5)


# ------------------------------------------------------------------ Kernel


def test_submit_numbers_processes_from_one():
    kernel = make_kernel()
    first = kernel.submit(["EXIT"])
    second = kernel.submit(["EXIT"])
    assert (first.pid, second.pid) == (1, 2)
    assert first.burst_estimate == 10000


def test_admit_respects_multiprogramming_degree():
    kernel = make_kernel(max_mp=1)
    kernel.submit(["EXIT"])
    kernel.submit(["EXIT"])
    admitted = kernel.admit()
    assert [pcb.pid for pcb in admitted] == [1]
    assert kernel.scheduler.ready_pids() == [1]
    assert [pcb.pid for pcb in kernel.processes] == [1]


def test_dispatch_only_one_process_at_a_time():
    kernel = make_kernel()
    kernel.submit(["EXIT"])
    kernel.submit(["EXIT"])
    kernel.admit()
    context = kernel.dispatch()
    assert context.pid == 1
    assert kernel.dispatch() is None


def test_update_context_stores_pc():
    kernel = make_kernel()
    pcb, context = run_one(kernel)
    context.pc = 2
    kernel.update_context(context)
    assert pcb.pc == 2


def test_exit_tells_console_and_frees_everything():
    finished = []
    kernel = make_kernel(max_mp=1)
    pcb, _ = run_one(kernel, lambda pid, reason: finished.append((pid, reason)))
    kernel.submit(["EXIT"])
    assert kernel.handle_eviction(Instruction.EXIT, []) is None
    assert finished == [(pcb.pid, "SUCCESS")]
    assert kernel.processes == []
    assert pcb.pid not in kernel.memory.tables
    assert kernel.scheduler.running is None
    assert [p.pid for p in kernel.admit()] == [2]


def test_yield_returns_process_to_ready():
    kernel = make_kernel()
    pcb, _ = run_one(kernel)
    assert kernel.handle_eviction(Instruction.YIELD, []) is None
    assert kernel.scheduler.running is None
    assert kernel.scheduler.ready_pids() == [pcb.pid]


def test_wait_and_signal_block_and_wake():
    kernel = make_kernel()
    first = kernel.submit(["EXIT"])
    second = kernel.submit(["EXIT"])
    kernel.admit()
    kernel.dispatch()
    context = kernel.handle_eviction(Instruction.WAIT, ["DISCO"])
    assert context.pid == first.pid
    disk = find_resource(kernel.resources, "DISCO")
    assert disk.available == 0
    kernel.handle_eviction(Instruction.YIELD, [])
    kernel.dispatch()
    assert kernel.handle_eviction(Instruction.WAIT, ["DISCO"]) is None
    assert list(disk.blocked) == [second]
    assert kernel.scheduler.running is None
    kernel.dispatch()
    context = kernel.handle_eviction(Instruction.SIGNAL, ["DISCO"])
    assert context.pid == first.pid
    assert second.pid in kernel.scheduler.ready_pids()
    assert disk not in first.assigned_resources


def test_wait_unknown_resource_kills_process():
    finished = []
    kernel = make_kernel()
    pcb, _ = run_one(kernel, lambda pid, reason: finished.append((pid, reason)))
    kernel.handle_eviction(Instruction.WAIT, ["IMPRESORA"])
    assert finished == [(pcb.pid, "RESOURCE_NOT_FOUND")]


def test_seg_fault_kills_process():
    finished = []
    kernel = make_kernel()
    pcb, _ = run_one(kernel, lambda pid, reason: finished.append((pid, reason)))
    kernel.handle_eviction(Instruction.SEG_FAULT, [])
    assert finished == [(pcb.pid, "SEG_FAULT")]


def test_create_segment_updates_table_and_resumes():
    kernel = make_kernel()
    pcb, _ = run_one(kernel)
    context = kernel.handle_eviction(Instruction.CREATE_SEGMENT, ["1", "30"])
    segment = find_segment(context.segments, 1)
    assert segment.size == 30
    assert segment.base == kernel.memory.segment_zero.size
    assert find_segment(pcb.segments, 1).size == 30


def test_create_segment_with_compaction():
    kernel = make_kernel()
    pcb, _ = run_one(kernel)
    kernel.handle_eviction(Instruction.CREATE_SEGMENT, ["1", "30"])
    kernel.handle_eviction(Instruction.CREATE_SEGMENT, ["2", "30"])
    kernel.handle_eviction(Instruction.DELETE_SEGMENT, ["1"])
    context = kernel.handle_eviction(Instruction.CREATE_SEGMENT, ["1", "40"])
    second = find_segment(context.segments, 2)
    first = find_segment(context.segments, 1)
    assert second.base == kernel.memory.segment_zero.size
    assert first.base == second.base + second.size
    assert first.size == 40


def test_create_segment_out_of_memory_kills_process():
    finished = []
    kernel = make_kernel()
    pcb, _ = run_one(kernel, lambda pid, reason: finished.append((pid, reason)))
    kernel.handle_eviction(Instruction.CREATE_SEGMENT, ["1", "500"])
    assert finished == [(pcb.pid, "OUT_OF_MEMORY")]


def test_delete_segment_empties_slot():
    kernel = make_kernel()
    pcb, _ = run_one(kernel)
    kernel.handle_eviction(Instruction.CREATE_SEGMENT, ["1", "30"])
    context = kernel.handle_eviction(Instruction.DELETE_SEGMENT, ["1"])
    assert find_segment(context.segments, 1).size == 0
    assert find_segment(pcb.segments, 1).size == 0


def test_open_unheld_file_sends_request_and_keeps_cpu():
    kernel = make_kernel()
    pcb, _ = run_one(kernel)
    assert kernel.handle_eviction(Instruction.F_OPEN, ["notas"]) is None
    assert kernel.scheduler.running is pcb
    assert kernel.requests.sent[-1].operation == "open"
    assert pcb.find_open_file("notas").pointer == 0


def test_seek_and_truncate():
    kernel = make_kernel()
    pcb, _ = run_one(kernel)
    kernel.handle_eviction(Instruction.F_OPEN, ["notas"])
    context = kernel.handle_eviction(Instruction.F_SEEK, ["notas", "8"])
    assert context.pid == pcb.pid
    assert pcb.find_open_file("notas").pointer == 8
    assert kernel.handle_eviction(Instruction.F_TRUNCATE, ["notas", "64"]) is None
    assert kernel.requests.sent[-1].arguments == ("notas", 64, pcb.pid)
    assert kernel.scheduler.running is None


def test_io_blocks_until_finished():
    kernel = make_kernel()
    pcb, _ = run_one(kernel)
    assert kernel.handle_eviction(Instruction.IO, ["60"]) is None
    assert kernel.io_blocked == [pcb]
    assert kernel.scheduler.running is None
    kernel.finish_io(pcb)
    assert kernel.io_blocked == []
    assert kernel.scheduler.ready_pids() == [pcb.pid]


def test_finish_io_of_unblocked_process_fails():
    kernel = make_kernel()
    pcb, _ = run_one(kernel)
    with pytest.raises(LookupError):
        kernel.finish_io(pcb)


def test_invalid_eviction_reason_raises():
    kernel = make_kernel()
    run_one(kernel)
    with pytest.raises(ValueError):
        kernel.handle_eviction(Instruction.SET, [])


def test_eviction_without_running_process_raises():
    kernel = make_kernel()
    with pytest.raises(RuntimeError):
        kernel.handle_eviction(Instruction.YIELD, [])