# test/test_block.py
import numpy as np
import pytest

from bdfstore.core import BlockDirectory, BlockEntry, BlockInfo, DateTime, Extent, InvalidHandleError
from bdfstore.core.block import trim_extents
from bdfstore.core.exceptions import InternalError


def _info(length, reductions=0):
    return BlockInfo(
        reduction_factor=16,
        number_of_reductions=reductions,
        preferred_transfer_size=4,
        block_length=length,
        external_timebase=False,
        sample_rate_hertz=1000.0,
        timebase_divisor=1,
        start_time=DateTime(2024, 5, 1),
        trigger_time_seconds=0.0,
        trigger_sample=0,
        stop_trigger_sample=0,
    )


EXTENTS = (Extent(100, 0, 4), Extent(200, 4, 4), Extent(300, 8, 2))


def test_locate_spans_extents():
    entry = BlockEntry(0, _info(10), EXTENTS)
    parts = [(ext.offset, inner, take) for ext, inner, take in entry.locate(3, 6)]
    assert parts == [(100, 3, 1), (200, 0, 4), (300, 0, 1)]


def test_locate_inside_one_extent():
    entry = BlockEntry(0, _info(10), EXTENTS)
    parts = [(ext.offset, inner, take) for ext, inner, take in entry.locate(5, 2)]
    assert parts == [(200, 1, 2)]


def test_extents_must_cover_block():
    with pytest.raises(InternalError):
        BlockEntry(0, _info(11), EXTENTS)
    with pytest.raises(InternalError):
        BlockEntry(0, _info(6), (Extent(0, 0, 4), Extent(8, 5, 2)))


def test_curve_count_must_match_and_curves_are_frozen():
    curve = np.zeros((1, 2), dtype=np.int32)
    with pytest.raises(InternalError):
        BlockEntry(0, _info(10, reductions=2), EXTENTS, (curve,))

    entry = BlockEntry(0, _info(10, reductions=1), EXTENTS, (curve,))
    with pytest.raises(ValueError):
        entry.curves[0][0, 0] = 5


def test_trim_extents():
    assert trim_extents(EXTENTS, 6) == (Extent(100, 0, 4), Extent(200, 4, 2))
    assert trim_extents(EXTENTS, 0) == ()
    assert trim_extents(EXTENTS, 10) == EXTENTS


def test_directory_is_ordered():
    directory = BlockDirectory()
    assert directory.next_block == 0
    directory.append(BlockEntry(0, _info(0)))
    with pytest.raises(InternalError):
        directory.append(BlockEntry(2, _info(0)))
    directory.append(BlockEntry(1, _info(0)))

    assert len(directory) == 2
    assert directory[1].index == 1
    assert [e.index for e in directory] == [0, 1]
    with pytest.raises(InvalidHandleError):
        directory[2]
    with pytest.raises(InvalidHandleError):
        directory[-1]
