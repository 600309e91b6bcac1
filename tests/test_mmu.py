import pytest

from minios.mmu import Segment, SegmentationFault, find_segment, translate

MAX = 64


@pytest.fixture
def segments():
    return [Segment(0, 0, 64), Segment(1, 200, 32)]


def test_find_segment(segments):
    assert find_segment(segments, 1) is segments[1]


def test_find_segment_missing(segments):
    assert find_segment(segments, 7) is None


def test_translate_start_of_segment_zero(segments):
    result = translate(0, segments, 4, MAX)
    assert result.segment_id == 0
    assert result.offset == 0
    assert result.physical_address == segments[0].base


def test_translate_start_of_segment_one(segments):
    result = translate(MAX, segments, 4, MAX)
    assert result.segment_id == 1
    assert result.physical_address == segments[1].base


def test_translate_with_offset(segments):
    result = translate(MAX + 10, segments, 4, MAX)
    assert result.offset == 10
    assert result.physical_address == 210


def test_translate_exactly_at_limit(segments):
    result = translate(MAX + 28, segments, 4, MAX)
    assert result.physical_address - segments[1].base == result.offset


def test_translate_past_limit_faults(segments):
    with pytest.raises(SegmentationFault) as info:
        translate(MAX + 30, segments, 4, MAX)
    assert info.value.segment_id == 1
    assert info.value.offset == 30
    assert info.value.segment_size == 32


def test_translate_missing_segment_faults(segments):
    with pytest.raises(SegmentationFault) as info:
        translate(5 * MAX, segments, 1, MAX)
    assert info.value.segment_id == 5