# bdfstore/io/layout.py
"""
On-disk layout of a container file.

All values are little-endian. The file is a 16-byte header followed by
chunks appended in write order:

    +-----------+----------+----------------+------------------+
    | TAG (4B)  | RSV (4B) | PAYLOAD (8B)   | payload ...      |
    +-----------+----------+----------------+------------------+

Chunks of several groups and inputs interleave freely. A file is finished
only when its last chunk is ENDF.
"""
from __future__ import annotations

import logging
import os
import struct
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Sequence

from bdfstore.core.exceptions import InvalidFileError, ResourceError
from bdfstore.core.metadata import DateTime

logger = logging.getLogger(__name__)

FILE_MAGIC = b"BDFSTORE"
FORMAT_VERSION = 1
FILE_HEADER = struct.Struct("<8sHHI")
CHUNK_HEADER = struct.Struct("<4sIQ")

TAG_GROUP = b"GRUP"
TAG_INPUT = b"INPT"
TAG_ATTRIBUTES = b"ATTR"
TAG_DATA = b"DATA"
TAG_ENVELOPE = b"ENVL"
TAG_BLOCK = b"BLKE"
TAG_END = b"ENDF"

_LEN = struct.Struct("<I")


@dataclass(frozen=True, slots=True)
class GroupRecord:
    """
    Group descriptor (GRUP).

    group_id is the position of the group in the file, number the
    caller-chosen group number.
    """
    group_id: int
    number: int
    mode: int
    external_timebase: bool
    sample_rate: float
    timebase_divisor: int
    trigger_sample: int
    start_time: DateTime

    FORMAT = struct.Struct("<IIBBdIQHBBBBBH")

    def pack(self) -> bytes:
        st = self.start_time
        return self.FORMAT.pack(
            self.group_id, self.number, self.mode, int(self.external_timebase),
            self.sample_rate, self.timebase_divisor, self.trigger_sample,
            st.year, st.month, st.day, st.hour, st.minute, st.second, st.millisecond,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "GroupRecord":
        (gid, number, mode, ext, rate, div, trig,
         year, month, day, hour, minute, second, ms) = cls.FORMAT.unpack_from(data)
        return cls(
            gid, number, mode, bool(ext), rate, div, trig,
            DateTime(year, month, day, hour, minute, second, ms),
        )


@dataclass(frozen=True, slots=True)
class InputRecord:
    """Input descriptor (INPT). The last record of an input wins."""
    group_id: int
    index: int
    board_number: int
    input_number: int
    analog_mask: int
    marker_mask: int
    bytes_per_sample: int
    resolution_in_bits: int
    number_of_marker_bits: int
    bin_to_volt_factor: float
    bin_to_volt_constant: float
    volt_to_physical_factor: float
    volt_to_physical_constant: float
    bin_to_physical_factor: float
    bin_to_physical_constant: float

    FORMAT = struct.Struct("<IIIIIIBBBx6d")

    def pack(self) -> bytes:
        return self.FORMAT.pack(
            self.group_id, self.index, self.board_number, self.input_number,
            self.analog_mask, self.marker_mask,
            self.bytes_per_sample, self.resolution_in_bits, self.number_of_marker_bits,
            self.bin_to_volt_factor, self.bin_to_volt_constant,
            self.volt_to_physical_factor, self.volt_to_physical_constant,
            self.bin_to_physical_factor, self.bin_to_physical_constant,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "InputRecord":
        return cls(*cls.FORMAT.unpack_from(data))


@dataclass(frozen=True, slots=True)
class AttributeRecord:
    """Attribute table of one input (ATTR): count, then length-prefixed UTF-8 pairs."""
    group_id: int
    index: int
    items: tuple[tuple[str, str], ...]

    FORMAT = struct.Struct("<III")

    def pack(self) -> bytes:
        parts = [self.FORMAT.pack(self.group_id, self.index, len(self.items))]
        for key, value in self.items:
            for text in (key, value):
                raw = text.encode("utf8")
                parts.append(_LEN.pack(len(raw)))
                parts.append(raw)
        return b"".join(parts)

    @classmethod
    def unpack(cls, data: bytes) -> "AttributeRecord":
        gid, index, n = cls.FORMAT.unpack_from(data)
        off = cls.FORMAT.size
        texts = []
        try:
            for _ in range(2 * n):
                (size,) = _LEN.unpack_from(data, off)
                off += _LEN.size
                raw = bytes(data[off:off + size])
                if len(raw) != size:
                    raise InvalidFileError("Attribute chunk truncated.")
                texts.append(raw.decode("utf8"))
                off += size
        except (struct.error, UnicodeDecodeError) as e:
            raise InvalidFileError(f"Malformed attribute chunk: {e}") from e
        items = tuple(zip(texts[0::2], texts[1::2]))
        return cls(gid, index, items)


@dataclass(frozen=True, slots=True)
class DataHeader:
    """Prefix of a DATA chunk; the sample words follow it."""
    group_id: int
    index: int
    block: int
    first_sample: int

    FORMAT = struct.Struct("<IIIQ")

    def pack(self) -> bytes:
        return self.FORMAT.pack(self.group_id, self.index, self.block, self.first_sample)

    @classmethod
    def unpack(cls, data: bytes) -> "DataHeader":
        return cls(*cls.FORMAT.unpack_from(data))


@dataclass(frozen=True, slots=True)
class EnvelopeHeader:
    """Prefix of an ENVL chunk; `pairs` int32 (min, max) pairs follow it."""
    group_id: int
    index: int
    block: int
    level: int
    pairs: int

    FORMAT = struct.Struct("<IIIIQ")

    def pack(self) -> bytes:
        return self.FORMAT.pack(self.group_id, self.index, self.block, self.level, self.pairs)

    @classmethod
    def unpack(cls, data: bytes) -> "EnvelopeHeader":
        return cls(*cls.FORMAT.unpack_from(data))


@dataclass(frozen=True, slots=True)
class BlockRecord:
    """End-of-record entry (BLKE) finalizing one block of one input."""
    group_id: int
    index: int
    block: int
    reduction_factor: int
    number_of_reductions: int
    preferred_transfer_size: int
    block_length: int
    trigger_time_seconds: float
    trigger_sample: int
    stop_trigger_sample: int

    FORMAT = struct.Struct("<IIIIIIQdQQ")

    def pack(self) -> bytes:
        return self.FORMAT.pack(
            self.group_id, self.index, self.block,
            self.reduction_factor, self.number_of_reductions, self.preferred_transfer_size,
            self.block_length, self.trigger_time_seconds,
            self.trigger_sample, self.stop_trigger_sample,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "BlockRecord":
        return cls(*cls.FORMAT.unpack_from(data))


END_RECORD = struct.Struct("<I")


@dataclass(frozen=True, slots=True)
class ChunkInfo:
    tag: bytes
    offset: int
    payload_offset: int
    size: int


def iter_chunks(f: BinaryIO, total_size: int) -> Iterator[ChunkInfo]:
    """
    Walk the chunk headers of an open container file.

    Validates the file header first; payloads are skipped, not read.
    """
    f.seek(0)
    head = f.read(FILE_HEADER.size)
    if len(head) != FILE_HEADER.size:
        raise InvalidFileError("File too short for a container header.")
    magic, version, _, _ = FILE_HEADER.unpack(head)
    if magic != FILE_MAGIC:
        raise InvalidFileError(f"Bad magic {magic!r}, not a container file.")
    if version != FORMAT_VERSION:
        raise InvalidFileError(f"Unsupported format version {version}.")

    off = FILE_HEADER.size
    while off < total_size:
        f.seek(off)
        raw = f.read(CHUNK_HEADER.size)
        if len(raw) != CHUNK_HEADER.size:
            raise InvalidFileError(f"Truncated chunk header at offset {off}.")
        tag, _, size = CHUNK_HEADER.unpack(raw)
        payload = off + CHUNK_HEADER.size
        if payload + size > total_size:
            raise InvalidFileError(f"Chunk {tag!r} at offset {off} runs past end of file.")
        yield ChunkInfo(tag, off, payload, size)
        off = payload + size


class ChunkSink:
    """
    Append-only chunk writer over the working file.

    Appends are serialized by a lock so groups may write from several threads.
    A failed append truncates the file back to its last complete chunk.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        try:
            self._f: BinaryIO | None = open(self.path, "w+b")
        except OSError as e:
            raise ResourceError(f"Cannot create working file {self.path}: {e}") from e
        try:
            self._f.write(FILE_HEADER.pack(FILE_MAGIC, FORMAT_VERSION, 0, 0))
        except OSError as e:
            self._f.close()
            self._f = None
            raise ResourceError(f"Cannot write header of {self.path}: {e}") from e
        self._size = FILE_HEADER.size
        logger.debug("created working file %s", self.path)

    @property
    def size(self) -> int:
        return self._size

    @property
    def closed(self) -> bool:
        return self._f is None

    def append(self, tag: bytes, *parts: bytes | memoryview) -> int:
        """Write one chunk and return the file offset of its payload."""
        return self.append_many([(tag, *parts)])[0]

    def append_many(self, chunks: Sequence[tuple]) -> list[int]:
        """
        Write several (tag, *parts) chunks back to back.

        Either all of them land or, on failure, the file is truncated to
        where the first one started. Returns the payload offsets.
        """
        with self._lock:
            if self._f is None:
                raise ResourceError(f"Working file {self.path} is closed.")
            start = self._size
            offsets = []
            end = start
            try:
                self._f.seek(start)
                for tag, *parts in chunks:
                    size = sum(len(p) for p in parts)
                    self._f.write(CHUNK_HEADER.pack(tag, 0, size))
                    for p in parts:
                        self._f.write(p)
                    offsets.append(end + CHUNK_HEADER.size)
                    end += CHUNK_HEADER.size + size
            except OSError as e:
                self._rollback(start)
                raise ResourceError(f"Cannot append chunks to {self.path}: {e}") from e
            self._size = end
        return offsets

    def _rollback(self, size: int) -> None:
        try:
            self._f.truncate(size)
        except OSError:
            logger.exception("could not truncate %s back to %d bytes", self.path, size)

    def flush(self) -> None:
        with self._lock:
            if self._f is None:
                return
            try:
                self._f.flush()
            except OSError as e:
                raise ResourceError(f"Cannot flush {self.path}: {e}") from e

    def close(self) -> None:
        with self._lock:
            if self._f is None:
                return
            f, self._f = self._f, None
            try:
                f.flush()
                os.fsync(f.fileno())
            except OSError as e:
                raise ResourceError(f"Cannot sync {self.path}: {e}") from e
            finally:
                f.close()
