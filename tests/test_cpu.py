import pytest

from minios.config import CpuConfig
from minios.cpu import (
    Cpu,
    Eviction,
    ExecutionContext,
    MemoryBus,
    Registers,
    register_width,
)
from minios.instructions import Instruction
from minios.mmu import Segment


@pytest.fixture
def memory():
    return MemoryBus(512)


@pytest.fixture
def cpu(memory):
    config = CpuConfig(
        instruction_delay=0,
        memory_ip="127.0.0.1",
        memory_port=8002,
        listen_port=8001,
        max_segment_size=64,
    )
    return Cpu(config, memory)


def make_context(*instructions):
    return ExecutionContext(
        pid=1,
        instructions=list(instructions),
        segments=[Segment(0, 0, 64), Segment(1, 100, 32)],
    )


def test_register_widths():
    assert register_width("AX") == len("0000")
    assert register_width("EDX") == len("00000000")
    assert register_width("RCX") == len("0000000000000000")


def test_register_width_unknown():
    with pytest.raises(ValueError):
        register_width("ZX")


def test_registers_start_zeroed():
    registers = Registers()
    assert registers.read("AX") == "0000"
    assert registers.read("RAX") == "0000000000000000"


def test_registers_assign_and_read():
    registers = Registers()
    registers.assign("AX", "HOLA")
    assert registers.read("AX") == "HOLA"


def test_registers_copy_is_independent():
    registers = Registers()
    registers.assign("BX", "ABCD")
    clone = registers.copy()
    clone.assign("BX", "WXYZ")
    assert registers.read("BX") == "ABCD"
    assert clone == Registers(dict(clone.values))


def test_registers_reject_unknown_name():
    with pytest.raises(ValueError):
        Registers().assign("QX", "1234")


def test_memory_round_trip(memory):
    assert memory.write(10, "DATA", 1) == "OK"
    assert memory.read(10, 4, 1) == "DATA"


def test_memory_out_of_range(memory):
    with pytest.raises(IndexError):
        memory.read(510, 4, 1)


def test_set_then_yield(cpu):
    context = make_context("SET AX HOLA", "YIELD")
    eviction = cpu.execute(context)
    assert eviction == Eviction(Instruction.YIELD, [])
    assert context.pc == 2
    assert context.registers.read("AX") == "HOLA"


def test_mov_out_then_mov_in(cpu, memory):
    context = make_context("SET AX HOLA", "MOV_OUT 64 AX", "MOV_IN BX 64", "EXIT")
    eviction = cpu.execute(context)
    assert eviction.reason is Instruction.EXIT
    assert context.registers.read("BX") == "HOLA"
    assert memory.read(100, 4, 1) == "HOLA"


def test_mov_in_seg_fault(cpu):
    context = make_context("MOV_IN RAX 60", "EXIT")
    eviction = cpu.execute(context)
    assert eviction == Eviction(Instruction.SEG_FAULT, [])
    assert context.pc == 1


def test_io_carries_time(cpu):
    assert cpu.execute(make_context("IO 5")) == Eviction(Instruction.IO, ["5"])


def test_create_segment_carries_two_params(cpu):
    eviction = cpu.execute(make_context("CREATE_SEGMENT 1 32"))
    assert eviction == Eviction(Instruction.CREATE_SEGMENT, ["1", "32"])


def test_f_read_uses_physical_address(cpu):
    eviction = cpu.execute(make_context("F_READ notas 64 4"))
    assert eviction == Eviction(Instruction.F_READ, ["notas", "100", "4"])


def test_f_write_seg_fault(cpu):
    eviction = cpu.execute(make_context("F_WRITE notas 64 40"))
    assert eviction.reason is Instruction.SEG_FAULT
    assert eviction.params == []


def test_unknown_instruction_is_skipped(cpu):
    context = make_context("FOO", "EXIT")
    assert cpu.execute(context).reason is Instruction.EXIT
    assert context.pc == 2


def test_execute_instruction_set_does_not_evict(cpu):
    context = make_context("SET CX ABCD")
    assert cpu.execute_instruction(["SET", "CX", "ABCD"], context) is None
    assert context.registers.read("CX") == "ABCD"


def test_running_past_the_end_raises(cpu):
    with pytest.raises(IndexError):
        cpu.execute(make_context("SET AX HOLA"))