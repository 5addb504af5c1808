# bdfstore/core/envelope.py
"""
Min/max envelopes of analog sample ranges.

A requested range is cut into `count / 2` nearly equal segments and each
segment contributes one (min, max) pair. Blocks carry precomputed reduction
curves: curve k holds one pair per `factor**k` samples, aligned at sample 0
of the block and covering complete groups only. Reads combine whole curve
pairs with raw samples at the segment edges, so the result is the same as
scanning every raw sample.
"""
from __future__ import annotations

import logging
from typing import Callable, Sequence

import numpy as np

from .exceptions import ArgumentError, InternalError

logger = logging.getLogger(__name__)

AnalogReader = Callable[[int, int], np.ndarray]


def segment_bounds(block_size: int, n_segments: int) -> np.ndarray:
    """
    Return the n_segments + 1 boundaries partitioning [0, block_size).

    Segments are floor(block_size / n_segments) long, the remainder is spread
    one sample each over the earliest segments.
    """
    if n_segments < 1 or block_size < n_segments:
        raise ArgumentError(
            f"Cannot split {block_size} samples into {n_segments} non-empty segments."
        )
    base, extra = divmod(block_size, n_segments)
    sizes = np.full(n_segments, base, dtype=np.int64)
    sizes[:extra] += 1
    bounds = np.zeros(n_segments + 1, dtype=np.int64)
    np.cumsum(sizes, out=bounds[1:])
    return bounds


def reduce_pairs(mins: np.ndarray, maxs: np.ndarray, factor: int) -> tuple[np.ndarray, np.ndarray]:
    """Fold complete groups of `factor` pairs into one pair each."""
    n = mins.size // factor
    used = n * factor
    return (
        mins[:used].reshape(n, factor).min(axis=1),
        maxs[:used].reshape(n, factor).max(axis=1),
    )


class ReductionBuilder:
    """Accumulates the first reduction level while samples stream in."""

    def __init__(self, factor: int) -> None:
        if factor < 2:
            raise ArgumentError("Reduction factor must be >= 2.")
        self.factor = factor
        self.samples = 0
        self._carry = np.empty(0, dtype=np.int32)
        self._mins: list[np.ndarray] = []
        self._maxs: list[np.ndarray] = []

    def feed(self, analog: np.ndarray) -> None:
        values = np.asarray(analog).astype(np.int32, copy=False)
        self.samples += values.size
        if self._carry.size:
            values = np.concatenate((self._carry, values))
        n = values.size // self.factor
        if n:
            groups = values[: n * self.factor].reshape(n, self.factor)
            self._mins.append(groups.min(axis=1))
            self._maxs.append(groups.max(axis=1))
        self._carry = values[n * self.factor:].copy()

    def curves(self, n_samples: int, max_levels: int) -> list[np.ndarray]:
        """Build the curves of the first n_samples fed, shape (pairs, 2) each."""
        if n_samples > self.samples:
            raise InternalError(
                f"Reduction requested over {n_samples} samples, only {self.samples} were fed."
            )
        if max_levels <= 0:
            return []

        n1 = n_samples // self.factor
        if self._mins:
            mins = np.concatenate(self._mins)[:n1]
            maxs = np.concatenate(self._maxs)[:n1]
        else:
            mins = maxs = np.empty(0, dtype=np.int32)

        curves: list[np.ndarray] = []
        while mins.size and len(curves) < max_levels:
            curves.append(np.column_stack((mins, maxs)).astype(np.int32, copy=False))
            mins, maxs = reduce_pairs(mins, maxs, self.factor)
        return curves


class EnvelopeReducer:
    """Computes envelopes of one block from its curves and raw samples."""

    def __init__(
        self,
        read_analog: AnalogReader,
        block_length: int,
        curves: Sequence[np.ndarray] = (),
        factor: int = 0,
    ) -> None:
        self._read = read_analog
        self.block_length = block_length
        self.curves = tuple(curves)
        self.factor = factor

    def validate(self, address: int, block_size: int, count: int) -> None:
        if count <= 0 or count % 2:
            raise ArgumentError(f"Envelope count must be even and > 0, got {count}.")
        if block_size < 1:
            raise ArgumentError(f"Envelope block size must be >= 1, got {block_size}.")
        if count > 2 * block_size:
            raise ArgumentError(
                f"Envelope count {count} exceeds twice the block size {block_size}."
            )
        if address < 0 or address + block_size > self.block_length:
            raise ArgumentError(
                f"Envelope range [{address}, {address + block_size}) outside block "
                f"of {self.block_length} samples."
            )

    def level_for(self, min_segment: int) -> int:
        """Coarsest curve level whose pair span fits twice into min_segment, 0 for raw."""
        level = 0
        if self.factor < 2:
            return level
        span = self.factor
        for k in range(1, len(self.curves) + 1):
            if 2 * span > min_segment:
                break
            level = k
            span *= self.factor
        return level

    def reduce(self, address: int, block_size: int, count: int) -> tuple[np.ndarray, np.ndarray]:
        """Return (mins, maxs), one entry per segment, as int32 analog values."""
        self.validate(address, block_size, count)
        n_segments = count // 2
        bounds = segment_bounds(block_size, n_segments)
        level = self.level_for(block_size // n_segments)

        if level == 0:
            values = self._read(address, block_size)
            starts = bounds[:-1]
            return np.minimum.reduceat(values, starts), np.maximum.reduceat(values, starts)

        logger.debug("envelope of %d samples via curve level %d", block_size, level)
        return self._reduce_with_curve(address + bounds, level)

    def _reduce_with_curve(self, edges: np.ndarray, level: int) -> tuple[np.ndarray, np.ndarray]:
        curve = self.curves[level - 1]
        span = self.factor ** level
        n_segments = edges.size - 1
        mins = np.empty(n_segments, dtype=np.int32)
        maxs = np.empty(n_segments, dtype=np.int32)

        for i in range(n_segments):
            s = int(edges[i])
            e = int(edges[i + 1])
            j0 = -(-s // span)
            j1 = min(e // span, curve.shape[0])

            lo: int | None = None
            hi: int | None = None
            if j1 > j0:
                inner = curve[j0:j1]
                lo = int(inner[:, 0].min())
                hi = int(inner[:, 1].max())
                pieces = ((s, j0 * span), (j1 * span, e))
            else:
                pieces = ((s, e),)

            for a, b in pieces:
                if b <= a:
                    continue
                raw = self._read(a, b - a)
                raw_lo = int(raw.min())
                raw_hi = int(raw.max())
                lo = raw_lo if lo is None else min(lo, raw_lo)
                hi = raw_hi if hi is None else max(hi, raw_hi)

            mins[i] = lo
            maxs[i] = hi
        return mins, maxs
