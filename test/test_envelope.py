# test/test_envelope.py
import numpy as np
import pytest

from bdfstore.core import ArgumentError, EnvelopeReducer, ReductionBuilder, segment_bounds
from bdfstore.core.exceptions import InternalError


def _naive_envelope(values, address, block_size, count):
    bounds = segment_bounds(block_size, count // 2) + address
    mins = [values[a:b].min() for a, b in zip(bounds[:-1], bounds[1:])]
    maxs = [values[a:b].max() for a, b in zip(bounds[:-1], bounds[1:])]
    return np.array(mins), np.array(maxs)


@pytest.fixture
def samples():
    rng = np.random.default_rng(7)
    return rng.integers(-30000, 30000, size=5000).astype(np.int32)


@pytest.fixture
def built(samples):
    builder = ReductionBuilder(4)
    for part in np.array_split(samples, [3, 250, 251, 1999, 4097]):
        builder.feed(part)
    return builder


def test_segment_sizes_spread_remainder_first():
    assert list(np.diff(segment_bounds(52, 5))) == [11, 11, 10, 10, 10]
    assert list(np.diff(segment_bounds(152, 5))) == [31, 31, 30, 30, 30]
    assert segment_bounds(10, 5).tolist() == [0, 2, 4, 6, 8, 10]


def test_segment_bounds_rejects_more_segments_than_samples():
    with pytest.raises(ArgumentError):
        segment_bounds(3, 4)
    with pytest.raises(ArgumentError):
        segment_bounds(3, 0)


def test_builder_levels(samples, built):
    curves = built.curves(4990, max_levels=8)
    assert [c.shape[0] for c in curves] == [1247, 311, 77, 19, 4, 1]

    level1 = curves[0]
    groups = samples[: 1247 * 4].reshape(-1, 4)
    assert np.array_equal(level1[:, 0], groups.min(axis=1))
    assert np.array_equal(level1[:, 1], groups.max(axis=1))

    level2 = curves[1]
    groups16 = samples[: 311 * 16].reshape(-1, 16)
    assert np.array_equal(level2[:, 0], groups16.min(axis=1))
    assert np.array_equal(level2[:, 1], groups16.max(axis=1))


def test_builder_respects_max_levels(built):
    assert len(built.curves(5000, max_levels=2)) == 2
    assert built.curves(5000, max_levels=0) == []


def test_builder_short_block_has_no_curves():
    builder = ReductionBuilder(16)
    builder.feed(np.arange(10, dtype=np.int32))
    assert builder.curves(10, max_levels=8) == []


def test_builder_rejects_unfed_samples(built):
    with pytest.raises(InternalError):
        built.curves(5001, max_levels=8)


def test_level_choice():
    curves = [np.zeros((1, 2), dtype=np.int32)] * 3
    reducer = EnvelopeReducer(lambda a, n: None, 1000, curves, 4)
    assert reducer.level_for(7) == 0
    assert reducer.level_for(8) == 1
    assert reducer.level_for(100) == 2
    assert reducer.level_for(10_000) == 3

    raw_only = EnvelopeReducer(lambda a, n: None, 1000)
    assert raw_only.level_for(10_000) == 0


@pytest.mark.parametrize(
    "address, block_size, count",
    [
        (0, 4990, 10),
        (0, 4990, 2),
        (13, 4000, 6),
        (777, 3001, 40),
        (4000, 990, 990 * 2),
        (1, 52, 10),
    ],
)
def test_curve_envelope_equals_raw_scan(samples, built, address, block_size, count):
    n = 4990
    read = lambda a, k: samples[a:a + k]  # noqa: E731
    with_curves = EnvelopeReducer(read, n, built.curves(n, 8), 4)
    raw_only = EnvelopeReducer(read, n)

    lo_c, hi_c = with_curves.reduce(address, block_size, count)
    lo_r, hi_r = raw_only.reduce(address, block_size, count)
    lo_n, hi_n = _naive_envelope(samples, address, block_size, count)

    assert lo_c.size == count // 2
    assert np.array_equal(lo_c, lo_r) and np.array_equal(hi_c, hi_r)
    assert np.array_equal(lo_r, lo_n) and np.array_equal(hi_r, hi_n)


def test_curve_reads_touch_fewer_samples(samples, built):
    touched = {"n": 0}

    def read(a, k):
        touched["n"] += k
        return samples[a:a + k]

    reducer = EnvelopeReducer(read, 4990, built.curves(4990, 8), 4)
    reducer.reduce(0, 4990, 4)
    assert touched["n"] < 4990


@pytest.mark.parametrize(
    "address, block_size, count",
    [
        (0, 100, 0),
        (0, 100, 3),
        (0, 100, 202),
        (0, 0, 2),
        (-1, 10, 2),
        (95, 10, 2),
    ],
)
def test_invalid_requests(samples, address, block_size, count):
    reducer = EnvelopeReducer(lambda a, k: samples[a:a + k], 100)
    with pytest.raises(ArgumentError):
        reducer.reduce(address, block_size, count)
