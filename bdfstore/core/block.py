# bdfstore/core/block.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, NamedTuple

import numpy as np

from .exceptions import InternalError, InvalidHandleError
from .metadata import BlockInfo


class Extent(NamedTuple):
    """A run of consecutive samples of one block stored at `offset` in the file."""
    offset: int
    first_sample: int
    samples: int


def trim_extents(extents, n_samples: int) -> tuple[Extent, ...]:
    """Keep only the part of ordered extents that lies below n_samples."""
    kept: list[Extent] = []
    for ext in extents:
        if ext.first_sample >= n_samples:
            break
        kept.append(ext._replace(samples=min(ext.samples, n_samples - ext.first_sample)))
    return tuple(kept)


@dataclass(frozen=True, slots=True)
class BlockEntry:
    """
    A finalized block: public info, sample extents and reduction curves.

    Immutable once created, so readers may share it freely.
    """
    index: int
    info: BlockInfo
    extents: tuple[Extent, ...] = field(default=(), repr=False)
    curves: tuple[np.ndarray, ...] = field(default=(), repr=False)

    def __post_init__(self) -> None:
        expected = 0
        for ext in self.extents:
            if ext.first_sample != expected or ext.samples <= 0:
                raise InternalError(
                    f"Block {self.index}: extents not contiguous at sample {ext.first_sample}."
                )
            expected += ext.samples
        if expected != self.info.block_length:
            raise InternalError(
                f"Block {self.index}: extents hold {expected} samples, "
                f"block length is {self.info.block_length}."
            )
        if len(self.curves) != self.info.number_of_reductions:
            raise InternalError(
                f"Block {self.index}: {len(self.curves)} curves stored, "
                f"{self.info.number_of_reductions} declared."
            )
        for curve in self.curves:
            curve.flags.writeable = False

    @property
    def length(self) -> int:
        return self.info.block_length

    def locate(self, address: int, count: int) -> Iterator[tuple[Extent, int, int]]:
        """Yield (extent, start inside extent, samples) covering [address, address + count)."""
        starts = [e.first_sample for e in self.extents]
        i = max(int(np.searchsorted(starts, address, side="right")) - 1, 0)
        remaining = count
        pos = address
        while remaining > 0:
            ext = self.extents[i]
            inner = pos - ext.first_sample
            take = min(ext.samples - inner, remaining)
            yield ext, inner, take
            pos += take
            remaining -= take
            i += 1


class BlockDirectory:
    """Ordered, append-only list of finalized blocks of one (group, input)."""

    __slots__ = ("_entries",)

    def __init__(self) -> None:
        self._entries: list[BlockEntry] = []

    @property
    def next_block(self) -> int:
        return len(self._entries)

    def append(self, entry: BlockEntry) -> None:
        if entry.index != len(self._entries):
            raise InternalError(
                f"Block {entry.index} appended out of order, expected {len(self._entries)}."
            )
        self._entries.append(entry)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[BlockEntry]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> BlockEntry:
        if not isinstance(index, int) or not 0 <= index < len(self._entries):
            raise InvalidHandleError(f"Unknown block {index!r}.")
        return self._entries[index]
