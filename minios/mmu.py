"""Segmented address translation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, NamedTuple, Optional

log = logging.getLogger(__name__)


@dataclass
class Segment:
    """One entry of a process segment table."""

    id: int
    base: int
    size: int


class SegmentationFault(Exception):
    """An access fell outside its segment."""

    def __init__(self, segment_id: int, offset: int, segment_size: int):
        super().__init__(
            f"segmentation fault - segment {segment_id} - offset {offset} "
            f"- size {segment_size}"
        )
        self.segment_id = segment_id
        self.offset = offset
        self.segment_size = segment_size


class Translation(NamedTuple):
    """Result of translating a logical address."""

    physical_address: int
    segment_id: int
    offset: int


def find_segment(segments: Iterable[Segment], segment_id: int) -> Optional[Segment]:
    """Return the segment with ``segment_id``, or None."""
    return next((seg for seg in segments if seg.id == segment_id), None)


def translate(
    logical_address: int,
    segments: Iterable[Segment],
    size: int,
    max_segment_size: int,
) -> Translation:
    """Translate a logical address for an access of ``size`` bytes.

    Raises SegmentationFault when the access does not fit in its segment.
    """
    segment_id, offset = divmod(logical_address, max_segment_size)
    segment = find_segment(segments, segment_id)
    if segment is None:
        log.error("segmentation fault - segment %d is not in the table", segment_id)
        raise SegmentationFault(segment_id, offset, 0)
    if offset + size > segment.size:
        log.error(
            "segmentation fault - segment %d - offset %d - size %d",
            segment_id, offset, segment.size,
        )
        raise SegmentationFault(segment_id, offset, segment.size)
    physical = segment.base + offset
    log.debug("physical address %d", physical)
    return Translation(physical, segment_id, offset)