# bdfstore/io/reader.py
from __future__ import annotations

import logging
import os
import struct
from collections import defaultdict
from pathlib import Path

import numpy as np

from bdfstore.core.attributes import AttributeStore
from bdfstore.core.block import BlockEntry, Extent, trim_extents
from bdfstore.core.channel import InputChannel
from bdfstore.core.exceptions import (
    ArgumentError,
    InternalError,
    InvalidFileError,
    InvalidHandleError,
    ResourceError,
)
from bdfstore.core.group import Group
from bdfstore.core.metadata import BlockInfo
from bdfstore.core.scaling import Scaling
from bdfstore.io.layout import (
    TAG_ATTRIBUTES,
    TAG_BLOCK,
    TAG_DATA,
    TAG_END,
    TAG_ENVELOPE,
    TAG_GROUP,
    TAG_INPUT,
    AttributeRecord,
    BlockRecord,
    DataHeader,
    EnvelopeHeader,
    GroupRecord,
    InputRecord,
    iter_chunks,
)

logger = logging.getLogger(__name__)


class SampleSource:
    """
    Memory-mapped read access to the sample bytes of a container file.

    With growing=True the map is re-created when a read reaches past its end,
    which lets a writer's own file be read while it is still being appended.
    """

    def __init__(self, path: Path, *, growing: bool = False) -> None:
        self.path = Path(path)
        self.growing = growing
        self._map: np.memmap | None = None
        self._remap()

    def _remap(self) -> None:
        try:
            self._map = np.memmap(self.path, dtype=np.uint8, mode="r")
        except (OSError, ValueError) as e:
            raise ResourceError(f"Cannot map {self.path}: {e}") from e

    def read(self, offset: int, nbytes: int) -> np.ndarray:
        if self._map is None:
            raise ResourceError(f"{self.path} is no longer mapped.")
        if offset + nbytes > self._map.size and self.growing:
            self._remap()
        if offset + nbytes > self._map.size:
            raise InternalError(
                f"Read of {nbytes} bytes at {offset} past end of {self.path} ({self._map.size} bytes)."
            )
        return self._map[offset:offset + nbytes]

    def close(self) -> None:
        self._map = None


def read_words(source: SampleSource, channel: InputChannel, entry: BlockEntry, address: int, count: int) -> np.ndarray:
    """Gather `count` sample words of a block starting at `address`."""
    bps = channel.bytes_per_sample
    parts = [
        np.frombuffer(source.read(ext.offset + inner * bps, take * bps), dtype=channel.word_dtype)
        for ext, inner, take in entry.locate(address, count)
    ]
    if len(parts) == 1:
        return parts[0].copy()
    return np.concatenate(parts)


def _channel_from_record(rec: InputRecord) -> InputChannel:
    scaling = Scaling(
        rec.bin_to_volt_factor,
        rec.bin_to_volt_constant,
        rec.volt_to_physical_factor,
        rec.volt_to_physical_constant,
    )
    if not scaling.agrees_with(rec.bin_to_physical_factor, rec.bin_to_physical_constant):
        raise InvalidFileError(
            f"Input {rec.index} of group {rec.group_id}: stored bin->physical constants "
            f"disagree with bin->volt->physical."
        )
    channel = InputChannel(
        board_number=rec.board_number,
        input_number=rec.input_number,
        index=rec.index,
        analog_mask=rec.analog_mask,
        marker_mask=rec.marker_mask,
        scaling=scaling,
        locked=True,
    )
    if channel.bytes_per_sample != rec.bytes_per_sample:
        raise InvalidFileError(
            f"Input {rec.index} of group {rec.group_id}: masks describe "
            f"{channel.bytes_per_sample} bytes per sample, record says {rec.bytes_per_sample}."
        )
    return channel


class _Directory:
    """Raw records collected from one pass over the chunks."""

    def __init__(self) -> None:
        self.groups: dict[int, GroupRecord] = {}
        self.inputs: dict[tuple[int, int], InputRecord] = {}
        self.attributes: dict[tuple[int, int], AttributeRecord] = {}
        self.data: dict[tuple[int, int, int], list[tuple[int, int, int]]] = defaultdict(list)
        self.curves: dict[tuple[int, int, int], dict[int, np.ndarray]] = defaultdict(dict)
        self.blocks: list[BlockRecord] = []
        self.ended = False

    def scan(self, f, total: int) -> None:
        for chunk in iter_chunks(f, total):
            if self.ended:
                raise InvalidFileError(f"Chunk {chunk.tag!r} found after end of file record.")
            f.seek(chunk.payload_offset)
            if chunk.tag == TAG_DATA:
                head = DataHeader.unpack(f.read(DataHeader.FORMAT.size))
                self.data[(head.group_id, head.index, head.block)].append(
                    (chunk.payload_offset + DataHeader.FORMAT.size,
                     head.first_sample,
                     chunk.size - DataHeader.FORMAT.size)
                )
            elif chunk.tag == TAG_ENVELOPE:
                head = EnvelopeHeader.unpack(f.read(EnvelopeHeader.FORMAT.size))
                raw = f.read(head.pairs * 8)
                if len(raw) != head.pairs * 8:
                    raise InvalidFileError("Envelope chunk truncated.")
                curve = np.frombuffer(raw, dtype="<i4").reshape(-1, 2).astype(np.int32)
                # a retried finalization rewrites its curves, the last one wins
                self.curves[(head.group_id, head.index, head.block)][head.level] = curve
            elif chunk.tag == TAG_GROUP:
                rec = GroupRecord.unpack(f.read(chunk.size))
                self.groups[rec.group_id] = rec
            elif chunk.tag == TAG_INPUT:
                rec = InputRecord.unpack(f.read(chunk.size))
                self.inputs[(rec.group_id, rec.index)] = rec
            elif chunk.tag == TAG_ATTRIBUTES:
                rec = AttributeRecord.unpack(f.read(chunk.size))
                self.attributes[(rec.group_id, rec.index)] = rec
            elif chunk.tag == TAG_BLOCK:
                self.blocks.append(BlockRecord.unpack(f.read(chunk.size)))
            elif chunk.tag == TAG_END:
                self.ended = True
            else:
                logger.warning("skipping unknown chunk %r at offset %d", chunk.tag, chunk.offset)


def parse_container(path: Path) -> list[Group]:
    """
    Read every directory structure of a finished container file.

    Sample payloads are not read, only their positions are recorded.
    """
    path = Path(path)
    try:
        total = os.path.getsize(path)
        f = open(path, "rb")
    except OSError as e:
        raise ResourceError(f"Cannot open {path}: {e}") from e

    directory = _Directory()
    with f:
        try:
            directory.scan(f, total)
        except struct.error as e:
            raise InvalidFileError(f"{path}: malformed chunk: {e}") from e

    if not directory.ended:
        raise InvalidFileError(f"{path} has no end of file record; not a finished container.")

    try:
        return _assemble(directory)
    except InvalidFileError:
        raise
    except (ArgumentError, InternalError, InvalidHandleError) as e:
        raise InvalidFileError(f"{path}: inconsistent directory: {e}") from e


def _assemble(directory: _Directory) -> list[Group]:
    groups, inputs = directory.groups, directory.inputs
    if sorted(groups) != list(range(len(groups))):
        raise InvalidFileError(f"Group ids {sorted(groups)} are not contiguous.")

    result: list[Group] = []
    for gid in range(len(groups)):
        rec = groups[gid]
        group = Group(
            number=rec.number,
            mode=rec.mode,
            sample_rate=rec.sample_rate,
            start_time=rec.start_time,
            timebase_divisor=rec.timebase_divisor,
            trigger_sample=rec.trigger_sample,
            external_timebase=rec.external_timebase,
        )
        indices = sorted(idx for g, idx in inputs if g == gid)
        if indices != list(range(len(indices))):
            raise InvalidFileError(f"Group {gid}: input indices {indices} are not contiguous.")
        for idx in indices:
            channel = _channel_from_record(inputs[(gid, idx)])
            attr = directory.attributes.get((gid, idx))
            channel.attributes = AttributeStore(dict(attr.items) if attr else None, sealed=True)
            group.register(channel)
        result.append(group)

    for rec in directory.blocks:
        if rec.group_id >= len(result):
            raise InvalidFileError(f"Block record for unknown group {rec.group_id}.")
        group = result[rec.group_id]
        channel = group.input(rec.index)
        bps = channel.bytes_per_sample
        key = (rec.group_id, rec.index, rec.block)

        extents = []
        for offset, first, nbytes in sorted(directory.data.get(key, ()), key=lambda d: d[1]):
            if nbytes % bps:
                raise InvalidFileError(f"Data chunk at {offset} holds a partial sample.")
            extents.append(Extent(offset, first, nbytes // bps))

        levels = directory.curves.get(key, {})
        try:
            block_curves = tuple(levels[k] for k in range(1, rec.number_of_reductions + 1))
        except KeyError as e:
            raise InvalidFileError(f"Block {key}: reduction curve {e} missing.") from e

        info = BlockInfo(
            reduction_factor=rec.reduction_factor,
            number_of_reductions=rec.number_of_reductions,
            preferred_transfer_size=rec.preferred_transfer_size,
            block_length=rec.block_length,
            external_timebase=group.external_timebase,
            sample_rate_hertz=group.sample_rate,
            timebase_divisor=group.timebase_divisor,
            start_time=group.start_time,
            trigger_time_seconds=rec.trigger_time_seconds,
            trigger_sample=rec.trigger_sample,
            stop_trigger_sample=rec.stop_trigger_sample,
        )
        channel.blocks.append(
            BlockEntry(
                index=rec.block,
                info=info,
                extents=trim_extents(extents, rec.block_length),
                curves=block_curves,
            )
        )
    return result
