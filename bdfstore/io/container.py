# bdfstore/io/container.py
from __future__ import annotations

import datetime as _dt
import functools
import logging
import operator
import os
import threading
from pathlib import Path

import numpy as np

from bdfstore.core.block import BlockEntry
from bdfstore.core.channel import InputChannel
from bdfstore.core.config import WriterConfig
from bdfstore.core.envelope import EnvelopeReducer
from bdfstore.core.exceptions import (
    ArgumentError,
    BdfError,
    InternalError,
    InvalidHandleError,
    ResourceError,
)
from bdfstore.core.group import Group
from bdfstore.core.handles import GroupHandle, HandleArena, StreamerHandle
from bdfstore.core.metadata import (
    CH_NAME,
    CH_PHYS_UNIT,
    BlockInfo,
    DateTime,
    InputInfo,
    OperationMode,
)
from bdfstore.core.timeseries import LazyTimeSeries, block_time
from bdfstore.io.layout import END_RECORD, TAG_END, ChunkSink
from bdfstore.io.reader import SampleSource, parse_container, read_words
from bdfstore.io.writer import GroupWriter, StreamWriter

logger = logging.getLogger(__name__)

_NEW = "new"
_WRITING = "writing"
_READING = "reading"
_CLOSED = "closed"


def _write_op(func):
    """Refuse writes on a faulted container; a fatal InternalError faults it."""

    @functools.wraps(func)
    def wrapper(self: "Container", *args, **kwargs):
        if self._faulted:
            raise InternalError(f"Container {self.path} is faulted, {func.__name__} refused.")
        try:
            return func(self, *args, **kwargs)
        except InternalError as e:
            if e.fatal:
                self._faulted = True
                logger.error("container %s faulted in %s: %s", self.path, func.__name__, e)
            raise

    return wrapper


def _logged(func):
    """Log the failure of an operation whose caller only sees the exception."""

    @functools.wraps(func)
    def wrapper(self: "Container", *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except BdfError as e:
            logger.error("%s failed on %s: %s [%s]", func.__name__, self.path, e, e.code.name)
            raise

    return wrapper


def _handle_index(value, what: str) -> int:
    try:
        return operator.index(value)
    except TypeError as e:
        raise InvalidHandleError(f"{what} must be an integer index, got {value!r}") from e


def _sample_arg(value, what: str) -> int:
    try:
        return operator.index(value)
    except TypeError as e:
        raise ArgumentError(f"{what} must be an integer, got {value!r}") from e


def _interleave(mins: np.ndarray, maxs: np.ndarray, dtype) -> np.ndarray:
    out = np.empty(2 * mins.size, dtype=dtype)
    out[0::2] = mins
    out[1::2] = maxs
    return out


class Container:
    """
    One container file, opened for writing or for reading.

    A writable container is built by init_file_writer (one call per group)
    and sealed by close_file, which promotes the working file to `path`.
    A readable container is opened with load_file. Both kinds answer the
    get_* queries; a container still being written does so after
    init_file_reader, and then only for finalized blocks.

    Groups are addressed by GroupHandle on the write side and by their
    position (0..n-1) on the read side. Inputs are addressed by
    (board, input) when writing and by registration index when reading.
    """

    def __init__(self, path: str | os.PathLike | None = None, config: WriterConfig | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self.config = config if config is not None else WriterConfig()
        if not isinstance(self.config, WriterConfig):
            raise ArgumentError("config must be a WriterConfig instance.")
        self._state = _NEW
        self._faulted = False
        self._lock = threading.Lock()

        self._writers: HandleArena[GroupWriter] = HandleArena(GroupHandle, reuse=False)
        self._group_writers: list[GroupWriter] = []
        self._streamers: HandleArena[StreamWriter] = HandleArena(StreamerHandle)
        self._sink: ChunkSink | None = None
        self._end_written = False

        self._groups: list[Group] = []
        self._source: SampleSource | None = None

    def __repr__(self) -> str:
        return f"Container(path={str(self.path)!r}, state={self._state!r})"

    @property
    def temp_path(self) -> Path | None:
        if self.path is None:
            return None
        return self.path.with_suffix(self.config.temp_suffix)

    @property
    def closed(self) -> bool:
        return self._state == _CLOSED

    @property
    def faulted(self) -> bool:
        return self._faulted

    # ---- context manager ----
    def __enter__(self) -> "Container":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self._state == _WRITING:
            if exc_type is None and not self._faulted:
                self.close_file()
            else:
                self.abandon()
        elif self._state == _READING:
            self.close_file()
        return False

    # ---- write side ----
    def _require_writable(self) -> None:
        if self._state == _READING:
            raise InvalidHandleError(f"Container {self.path} is open read-only.")
        if self._state == _CLOSED:
            raise InvalidHandleError(f"Container {self.path} is closed.")

    def _writer(self, handle: GroupHandle) -> GroupWriter:
        self._require_writable()
        if not isinstance(handle, GroupHandle):
            raise InvalidHandleError(f"Expected a GroupHandle, got {type(handle).__name__}.")
        if handle.is_default:
            for _, writer in self._writers.items():
                return writer
            raise InvalidHandleError("No open group to address with the default handle.")
        return self._writers.get(handle)

    @_write_op
    def init_file_writer(
        self,
        group: int,
        start_time: DateTime | _dt.datetime,
        mode: OperationMode | int,
        sample_rate: float,
        timebase_divisor: int = 1,
        trigger_sample: int = 0,
        *,
        external_timebase: bool = False,
    ) -> GroupHandle:
        """Begin a new writable group and return its handle."""
        with self._lock:
            self._require_writable()
            if self.path is None:
                raise ArgumentError("Container has no path to write to.")
            if isinstance(start_time, _dt.datetime):
                start_time = DateTime.from_datetime(start_time)
            if any(w.group.number == group for w in self._group_writers):
                raise ArgumentError(f"Group number {group!r} already used in {self.path}.")
            descriptor = Group(
                number=group,
                mode=mode,
                sample_rate=sample_rate,
                start_time=start_time,
                timebase_divisor=timebase_divisor,
                trigger_sample=trigger_sample,
                external_timebase=bool(external_timebase),
            )

            if self._sink is None:
                self._sink = ChunkSink(self.temp_path)
                self._state = _WRITING
                logger.info("writing %s via %s", self.path, self.temp_path)

            writer = GroupWriter(
                len(self._group_writers), descriptor, self._sink, self.config, self._streamers
            )
            handle = self._writers.insert(writer)
            self._group_writers.append(writer)
            logger.debug("group %d (number %d, %s) opened", writer.group_id, group, descriptor.mode.name)
            return handle

    @_write_op
    def write_input_header(
        self,
        board: int,
        input_: int,
        analog_mask: int,
        marker_mask: int,
        range_: float,
        offset: float,
        volt_to_physical_factor: float,
        volt_to_physical_constant: float,
        handle: GroupHandle = GroupHandle.DEFAULT,
    ) -> InputInfo:
        writer = self._writer(handle)
        channel = writer.write_input_header(
            board, input_, analog_mask, marker_mask,
            range_, offset, volt_to_physical_factor, volt_to_physical_constant,
        )
        return channel.info()

    @_write_op
    def init_input_streamer(
        self,
        board: int,
        input_: int,
        block_nr: int,
        handle: GroupHandle = GroupHandle.DEFAULT,
    ) -> StreamerHandle:
        return self._writer(handle).init_input_streamer(board, input_, block_nr)

    @_write_op
    def write_data(
        self,
        streamer: StreamerHandle,
        data,
        byte_count: int | None = None,
        handle: GroupHandle = GroupHandle.DEFAULT,
    ) -> int:
        """Append sample bytes to a streaming block; returns the bytes accepted."""
        return self._writer(handle).write_data(streamer, data, byte_count)

    @_write_op
    def set_attribute(
        self,
        input_: int,
        key: str,
        value: str,
        handle: GroupHandle = GroupHandle.DEFAULT,
    ) -> None:
        self._writer(handle).set_attribute(input_, key, value)

    @_write_op
    def write_attributes(self, handle: GroupHandle = GroupHandle.DEFAULT) -> None:
        self._writer(handle).write_attributes()

    @_write_op
    @_logged
    def write_eor_info(
        self,
        block_nr: int,
        trigger_time_ps: int,
        data_count: int,
        input_: int,
        board: int,
        handle: GroupHandle = GroupHandle.DEFAULT,
        *,
        stop_trigger_sample: int | None = None,
    ) -> None:
        """Finalize the streaming block of (board, input_) with its first data_count bytes."""
        self._writer(handle).write_eor_info(
            block_nr, trigger_time_ps, data_count, input_, board, stop_trigger_sample
        )

    @_write_op
    @_logged
    def close_file(self, handle: GroupHandle = GroupHandle.DEFAULT) -> None:
        """
        Close one group, or every group for GroupHandle.DEFAULT.

        When the last group is closed the end-of-file record is written and
        the working file replaces `path`. A read-only container releases its
        file mapping.
        """
        with self._lock:
            if self._state == _READING:
                self._release_source()
                self._state = _CLOSED
                logger.info("closed %s", self.path)
                return
            if self._state == _CLOSED:
                raise InvalidHandleError(f"Container {self.path} already closed.")
            if self._state == _NEW:
                self._state = _CLOSED
                logger.info("closed %s before any group was written", self.path)
                return

            if not isinstance(handle, GroupHandle):
                raise InvalidHandleError(f"Expected a GroupHandle, got {type(handle).__name__}.")
            if handle.is_default:
                targets = list(self._writers.items())
            else:
                targets = [(handle, self._writers.get(handle))]

            for h, writer in targets:
                writer.close()
                self._writers.release(h)

            if len(self._writers) == 0:
                self._finish()

    def _finish(self) -> None:
        if not self._end_written:
            self._sink.append(TAG_END, END_RECORD.pack(len(self._group_writers)))
            self._end_written = True
        self._sink.close()
        self._release_source()
        try:
            os.replace(self.temp_path, self.path)
        except OSError as e:
            raise ResourceError(
                f"Cannot promote {self.temp_path} to {self.path}, working file kept: {e}"
            ) from e
        self._state = _CLOSED
        logger.info("promoted %s (%d groups)", self.path, len(self._group_writers))

    def abandon(self) -> None:
        """Stop writing without promoting; the working file stays on disk."""
        with self._lock:
            if self._state != _WRITING:
                return
            self._release_source()
            try:
                self._sink.close()
            finally:
                self._state = _CLOSED
                logger.warning("abandoned %s, working file kept at %s", self.path, self.temp_path)

    # ---- read side ----
    def load_file(self, path: str | os.PathLike) -> None:
        """Open a finished container for read-only random access."""
        with self._lock:
            if self._state != _NEW:
                raise InvalidHandleError(f"Container {self.path} is already in use.")
            path = Path(path)
            if not path.is_file():
                raise ArgumentError(f"No such container file: {path}")
            groups = parse_container(path)
            self._source = SampleSource(path)
            self._groups = groups
            self.path = path
            self._state = _READING
            logger.info("loaded %s: %d groups", path, len(groups))

    def init_file_reader(self) -> None:
        """Make the get_* queries available while this container is still written."""
        with self._lock:
            if self._state != _WRITING:
                raise InvalidHandleError(f"Container {self.path} is not being written.")
            if self._source is None:
                self._sink.flush()
                self._source = SampleSource(self.temp_path, growing=True)
                logger.debug("live read view on %s", self.temp_path)

    def _release_source(self) -> None:
        if self._source is not None:
            self._source.close()
            self._source = None

    def _read_groups(self) -> list[Group]:
        if self._state == _READING:
            return self._groups
        if self._state == _WRITING and self._source is not None:
            self._sink.flush()
            return [w.group for w in self._group_writers]
        raise InvalidHandleError(
            f"Container {self.path} has no read view; use load_file or init_file_reader."
        )

    def _group(self, group: int) -> Group:
        groups = self._read_groups()
        i = _handle_index(group, "group")
        if not 0 <= i < len(groups):
            raise InvalidHandleError(f"Unknown group {group!r}, container has {len(groups)}.")
        return groups[i]

    def _channel(self, group: int, input_: int) -> InputChannel:
        return self._group(group).input(_handle_index(input_, "input"))

    def _locate(self, group: int, input_: int, block: int) -> tuple[InputChannel, BlockEntry]:
        channel = self._channel(group, input_)
        return channel, channel.blocks[_handle_index(block, "block")]

    def get_number_of_groups(self) -> int:
        return len(self._read_groups())

    def get_number_of_inputs(self, group: int) -> int:
        return len(self._group(group))

    def get_number_of_blocks(self, group: int, input_: int) -> int:
        return len(self._channel(group, input_).blocks)

    def get_operation_mode(self, group: int) -> OperationMode:
        return self._group(group).mode

    def get_input_info(self, group: int, input_: int) -> InputInfo:
        return self._channel(group, input_).info()

    def get_block_info(self, group: int, input_: int, block: int) -> BlockInfo:
        return self._locate(group, input_, block)[1].info

    def get_attribute(self, group: int, input_: int, key: str, max_size: int | None = None) -> str:
        """
        Return one attribute value of an input.

        With max_size set, a value longer than max_size characters raises
        ResourceError instead of being truncated.
        """
        value = self._channel(group, input_).attributes[key]
        if max_size is not None and len(value) > max_size:
            raise ResourceError(
                f"Attribute {key!r} holds {len(value)} characters, buffer allows {max_size}."
            )
        return value

    def attributes(self, group: int, input_: int) -> dict[str, str]:
        return self._channel(group, input_).attributes.copy()

    # ---- sample reads ----
    def _words(self, group, input_, block, address, count) -> tuple[InputChannel, np.ndarray]:
        channel, entry = self._locate(group, input_, block)
        address = _sample_arg(address, "address")
        count = _sample_arg(count, "count")
        if count < 1:
            raise ArgumentError(f"count must be >= 1, got {count}")
        if address < 0 or address + count > entry.length:
            raise ArgumentError(
                f"Samples [{address}, {address + count}) outside block of {entry.length}."
            )
        return channel, read_words(self._source, channel, entry, address, count)

    @staticmethod
    def _require_short(channel: InputChannel) -> None:
        if channel.bytes_per_sample != 2:
            raise ArgumentError(
                f"Input {channel.key} stores {channel.bytes_per_sample}-byte samples, "
                f"16-bit access needs 2."
            )

    def get_raw_data_s(self, group: int, input_: int, block: int, address: int, count: int) -> np.ndarray:
        """Unsigned 16-bit sample words, markers included. 2-byte inputs only."""
        self._require_short(self._locate(group, input_, block)[0])
        _, words = self._words(group, input_, block, address, count)
        return words.astype(np.uint16)

    def get_raw_data_l(self, group: int, input_: int, block: int, address: int, count: int) -> np.ndarray:
        """Sample words sign-extended to int32, markers included."""
        channel, words = self._words(group, input_, block, address, count)
        return words.view(channel.signed_dtype).astype(np.int32)

    def get_data_d(self, group: int, input_: int, block: int, address: int, count: int) -> np.ndarray:
        """Physical values as float64."""
        channel, words = self._words(group, input_, block, address, count)
        return channel.scaling.bin_to_physical(channel.analog(words))

    def get_data_f(self, group: int, input_: int, block: int, address: int, count: int) -> np.ndarray:
        return self.get_data_d(group, input_, block, address, count).astype(np.float32)

    # ---- envelopes ----
    def _envelope(self, group, input_, block, address, block_size, count):
        channel, entry = self._locate(group, input_, block)
        address = _sample_arg(address, "address")
        block_size = _sample_arg(block_size, "block_size")
        count = _sample_arg(count, "count")
        source = self._source

        def read_analog(start: int, n: int) -> np.ndarray:
            return channel.analog(read_words(source, channel, entry, start, n))

        reducer = EnvelopeReducer(read_analog, entry.length, entry.curves, entry.info.reduction_factor)
        mins, maxs = reducer.reduce(address, block_size, count)
        return channel, mins, maxs

    def get_env_raw_data_s(
        self, group: int, input_: int, block: int, address: int, block_size: int, count: int
    ) -> np.ndarray:
        self._require_short(self._locate(group, input_, block)[0])
        _, mins, maxs = self._envelope(group, input_, block, address, block_size, count)
        return _interleave(mins, maxs, np.int16).view(np.uint16)

    def get_env_raw_data_l(
        self, group: int, input_: int, block: int, address: int, block_size: int, count: int
    ) -> np.ndarray:
        _, mins, maxs = self._envelope(group, input_, block, address, block_size, count)
        return _interleave(mins, maxs, np.int32)

    def get_env_data_d(
        self, group: int, input_: int, block: int, address: int, block_size: int, count: int
    ) -> np.ndarray:
        """Interleaved [min, max, ...] physical envelope, `count` values."""
        channel, mins, maxs = self._envelope(group, input_, block, address, block_size, count)
        lo, hi = channel.scaling.physical_envelope(mins, maxs)
        return _interleave(lo, hi, np.float64)

    def get_env_data_f(
        self, group: int, input_: int, block: int, address: int, block_size: int, count: int
    ) -> np.ndarray:
        return self.get_env_data_d(group, input_, block, address, block_size, count).astype(np.float32)

    # ---- time-series view ----
    def series(self, group: int, input_: int, block: int) -> LazyTimeSeries:
        """Expose one block as a lazily loaded physical time series."""
        channel, entry = self._locate(group, input_, block)
        info = entry.info
        name = channel.attributes.get(CH_NAME) or (
            f"G{group}_B{channel.board_number}_I{channel.input_number}"
        )
        attrs = {
            "group": group,
            "board": channel.board_number,
            "input": channel.input_number,
            "block": entry.index,
            "trigger_time_seconds": info.trigger_time_seconds,
            **channel.attributes.copy(),
        }

        def loader() -> tuple[np.ndarray, np.ndarray]:
            time = block_time(entry.length, info.trigger_sample, info.effective_sample_rate)
            if entry.length == 0:
                return time, np.empty(0, dtype=np.float64)
            return time, self.get_data_d(group, input_, block, 0, entry.length)

        return LazyTimeSeries(loader, unit=channel.attributes.get(CH_PHYS_UNIT), name=name, attrs=attrs)
