# bdfstore/io/writer.py
from __future__ import annotations

import logging
import threading
from enum import Enum

from bdfstore.core.block import BlockEntry, Extent, trim_extents
from bdfstore.core.channel import InputChannel
from bdfstore.core.config import WriterConfig
from bdfstore.core.envelope import ReductionBuilder
from bdfstore.core.exceptions import ArgumentError, AttributesSealedError, InvalidHandleError
from bdfstore.core.group import Group
from bdfstore.core.handles import HandleArena, StreamerHandle
from bdfstore.core.metadata import BlockInfo
from bdfstore.io.layout import (
    TAG_ATTRIBUTES,
    TAG_BLOCK,
    TAG_DATA,
    TAG_ENVELOPE,
    TAG_GROUP,
    TAG_INPUT,
    AttributeRecord,
    BlockRecord,
    ChunkSink,
    DataHeader,
    EnvelopeHeader,
    GroupRecord,
    InputRecord,
)

logger = logging.getLogger(__name__)


class StreamState(Enum):
    UNINITIALIZED = "uninitialized"
    STREAMING = "streaming"
    FINALIZED = "finalized"


def _byte_view(data, byte_count: int | None) -> memoryview:
    try:
        view = memoryview(data).cast("B")
    except TypeError as e:
        raise ArgumentError(f"Data must be a C-contiguous buffer: {e}") from e
    if byte_count is None:
        return view
    if not isinstance(byte_count, int) or byte_count < 0:
        raise ArgumentError(f"byte_count must be an int >= 0, got {byte_count!r}")
    if byte_count > len(view):
        raise ArgumentError(f"byte_count {byte_count} exceeds buffer of {len(view)} bytes.")
    return view[:byte_count]


def input_record(group_id: int, channel: InputChannel) -> InputRecord:
    info = channel.info()
    return InputRecord(
        group_id=group_id,
        index=channel.index,
        board_number=info.board_number,
        input_number=info.input_number,
        analog_mask=info.analog_mask,
        marker_mask=info.marker_mask,
        bytes_per_sample=info.bytes_per_sample,
        resolution_in_bits=info.resolution_in_bits,
        number_of_marker_bits=info.number_of_marker_bits,
        bin_to_volt_factor=info.bin_to_volt_factor,
        bin_to_volt_constant=info.bin_to_volt_constant,
        volt_to_physical_factor=info.volt_to_physical_factor,
        volt_to_physical_constant=info.volt_to_physical_constant,
        bin_to_physical_factor=info.bin_to_physical_factor,
        bin_to_physical_constant=info.bin_to_physical_constant,
    )


class StreamWriter:
    """
    Incremental appender for one (group, input, block).

    Bytes are buffered and committed as DATA chunks of whole samples, at most
    transfer_size samples each. A partial trailing sample waits for the next
    write. The first reduction level is built as chunks are committed.
    """

    def __init__(
        self,
        group_id: int,
        group: Group,
        channel: InputChannel,
        block: int,
        sink: ChunkSink,
        config: WriterConfig,
    ) -> None:
        self.group_id = group_id
        self.group = group
        self.channel = channel
        self.block = block
        self.state = StreamState.UNINITIALIZED
        self._sink = sink
        self._config = config
        self._pending = bytearray()
        self._received = 0
        self._committed = 0
        self._extents: list[Extent] = []
        self._reduction = ReductionBuilder(config.reduction_factor)

    @property
    def bytes_received(self) -> int:
        return self._received

    def open(self) -> None:
        if self.state is not StreamState.UNINITIALIZED:
            raise InvalidHandleError(f"Streamer for block {self.block} already opened.")
        self.state = StreamState.STREAMING

    def _require_streaming(self) -> None:
        if self.state is not StreamState.STREAMING:
            raise InvalidHandleError(
                f"Streamer of input {self.channel.key} block {self.block} is {self.state.value}."
            )

    def write(self, data: memoryview) -> int:
        """Append data; on a failed commit nothing of it is buffered or counted."""
        self._require_streaming()
        buffer = self._pending + data
        chunk_bytes = self._config.transfer_size * self.channel.bytes_per_sample
        whole = len(buffer) - len(buffer) % chunk_bytes
        self._commit(buffer, whole)
        self._pending = buffer[whole:]
        self._received += len(data)
        return len(data)

    def flush(self) -> None:
        """Commit every whole sample still buffered."""
        bps = self.channel.bytes_per_sample
        whole = (len(self._pending) // bps) * bps
        self._commit(self._pending, whole)
        del self._pending[:whole]

    def _commit(self, buffer: bytearray, nbytes: int) -> None:
        if not nbytes:
            return
        bps = self.channel.bytes_per_sample
        chunk_bytes = self._config.transfer_size * bps
        first = self._committed
        chunks, pieces = [], []
        for lo in range(0, nbytes, chunk_bytes):
            payload = bytes(buffer[lo:min(lo + chunk_bytes, nbytes)])
            header = DataHeader(self.group_id, self.channel.index, self.block, first)
            chunks.append((TAG_DATA, header.pack(), payload))
            pieces.append((first, payload))
            first += len(payload) // bps
        offsets = self._sink.append_many(chunks)

        for offset, (start, payload) in zip(offsets, pieces):
            self._extents.append(Extent(offset + DataHeader.FORMAT.size, start, len(payload) // bps))
            self._reduction.feed(self.channel.analog(self.channel.words(payload)))
        self._committed = first

    def finalize(
        self,
        data_count: int,
        trigger_time_ps: int,
        stop_trigger_sample: int | None = None,
    ) -> BlockEntry:
        """
        Close the block with its first data_count bytes.

        Every argument is checked before anything is written.
        """
        self._require_streaming()
        bps = self.channel.bytes_per_sample
        if not isinstance(data_count, int) or data_count < 0:
            raise ArgumentError(f"data_count must be an int >= 0, got {data_count!r}")
        if data_count % bps:
            raise ArgumentError(
                f"data_count {data_count} is not a multiple of {bps} bytes per sample."
            )
        if data_count > self._received:
            raise ArgumentError(
                f"data_count {data_count} exceeds the {self._received} bytes written."
            )
        if not isinstance(trigger_time_ps, int) or trigger_time_ps < 0:
            raise ArgumentError(f"trigger_time_ps must be an int >= 0, got {trigger_time_ps!r}")
        n = data_count // bps
        stop = 0 if stop_trigger_sample is None else stop_trigger_sample
        if not isinstance(stop, int) or not 0 <= stop <= n:
            raise ArgumentError(f"stop_trigger_sample {stop!r} outside block of {n} samples.")

        self.flush()

        cfg = self._config
        curves = self._reduction.curves(n, cfg.max_reductions)
        for level, curve in enumerate(curves, start=1):
            header = EnvelopeHeader(self.group_id, self.channel.index, self.block, level, curve.shape[0])
            self._sink.append(TAG_ENVELOPE, header.pack(), curve.astype("<i4").tobytes())

        g = self.group
        info = BlockInfo(
            reduction_factor=cfg.reduction_factor,
            number_of_reductions=len(curves),
            preferred_transfer_size=cfg.transfer_size,
            block_length=n,
            external_timebase=g.external_timebase,
            sample_rate_hertz=g.sample_rate,
            timebase_divisor=g.timebase_divisor,
            start_time=g.start_time,
            trigger_time_seconds=trigger_time_ps * 1e-12,
            trigger_sample=g.trigger_sample,
            stop_trigger_sample=stop,
        )
        entry = BlockEntry(
            index=self.block,
            info=info,
            extents=trim_extents(self._extents, n),
            curves=tuple(curves),
        )
        record = BlockRecord(
            group_id=self.group_id,
            index=self.channel.index,
            block=self.block,
            reduction_factor=info.reduction_factor,
            number_of_reductions=info.number_of_reductions,
            preferred_transfer_size=info.preferred_transfer_size,
            block_length=n,
            trigger_time_seconds=info.trigger_time_seconds,
            trigger_sample=info.trigger_sample,
            stop_trigger_sample=stop,
        )
        self._sink.append(TAG_BLOCK, record.pack())
        self.channel.blocks.append(entry)
        self.state = StreamState.FINALIZED
        self._pending.clear()
        logger.debug(
            "group %d input %s block %d finalized: %d samples, %d curves",
            self.group_id, self.channel.key, self.block, n, len(curves),
        )
        return entry


class GroupWriter:
    """
    Write side of one group: input headers, attributes and its StreamWriters.

    All operations hold the group lock, so close() waits for in-flight writes.
    """

    def __init__(
        self,
        group_id: int,
        group: Group,
        sink: ChunkSink,
        config: WriterConfig,
        streamers: HandleArena[StreamWriter] | None = None,
    ) -> None:
        self.group_id = group_id
        self.group = group
        self.closed = False
        self.attributes_sealed = False
        self._sink = sink
        self._config = config
        self._lock = threading.RLock()
        # shared by every group of a container, so handles are unique across groups
        self._streamers: HandleArena[StreamWriter] = (
            streamers if streamers is not None else HandleArena(StreamerHandle)
        )
        self._active: dict[tuple[int, int], StreamerHandle] = {}
        self._inputs_on_disk: set[int] = set()

        record = GroupRecord(
            group_id=group_id,
            number=group.number,
            mode=int(group.mode),
            external_timebase=group.external_timebase,
            sample_rate=group.sample_rate,
            timebase_divisor=group.timebase_divisor,
            trigger_sample=group.trigger_sample,
            start_time=group.start_time,
        )
        sink.append(TAG_GROUP, record.pack())

    def _channel(self, board: int, input_: int) -> InputChannel:
        channel = self.group.find(board, input_)
        if channel is None:
            raise ArgumentError(
                f"Group {self.group.number}: input (board {board}, input {input_}) has no header."
            )
        return channel

    def _write_input(self, channel: InputChannel) -> None:
        self._sink.append(TAG_INPUT, input_record(self.group_id, channel).pack())
        self._inputs_on_disk.add(channel.index)

    def _write_attributes(self, channel: InputChannel) -> None:
        record = AttributeRecord(self.group_id, channel.index, tuple(channel.attributes.items()))
        self._sink.append(TAG_ATTRIBUTES, record.pack())
        channel.attributes.seal()

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
    ) -> InputChannel:
        with self._lock:
            for name, value in (("board", board), ("input", input_)):
                if not isinstance(value, int) or value < 0:
                    raise ArgumentError(f"{name} number must be an int >= 0, got {value!r}")
            existing = self.group.find(board, input_)
            if existing is not None and existing.locked:
                raise ArgumentError(
                    f"Input (board {board}, input {input_}) already streams, header is frozen."
                )
            index = existing.index if existing is not None else len(self.group.inputs)
            channel = InputChannel.from_header(
                board, input_, index, analog_mask, marker_mask,
                range_, offset, volt_to_physical_factor, volt_to_physical_constant,
            )
            self.group.register(channel)
            if self.attributes_sealed:
                channel.attributes.seal()
            logger.debug("group %d: header for input %s at index %d", self.group_id, channel.key, index)
            return channel

    def init_input_streamer(self, board: int, input_: int, block_nr: int) -> StreamerHandle:
        with self._lock:
            channel = self._channel(board, input_)
            if channel.key in self._active:
                raise ArgumentError(
                    f"Input {channel.key}: block {channel.blocks.next_block} is still streaming."
                )
            expected = channel.blocks.next_block
            if block_nr != expected:
                raise ArgumentError(
                    f"Input {channel.key}: block {block_nr!r} out of sequence, expected {expected}."
                )
            if not self.group.mode.independent_inputs:
                for other in self.group:
                    if other is not channel and other.locked and block_nr > other.blocks.next_block + 1:
                        raise ArgumentError(
                            f"Input {channel.key}: block {block_nr} runs ahead of input "
                            f"{other.key} at block {other.blocks.next_block}."
                        )

            if not channel.locked:
                channel.locked = True
                self._write_input(channel)

            writer = StreamWriter(self.group_id, self.group, channel, block_nr, self._sink, self._config)
            writer.open()
            handle = self._streamers.insert(writer)
            self._active[channel.key] = handle
            logger.debug("group %d input %s: streaming block %d", self.group_id, channel.key, block_nr)
            return handle

    def write_data(self, handle: StreamerHandle, data, byte_count: int | None = None) -> int:
        with self._lock:
            writer = self._streamers.get(handle)
            if writer.group_id != self.group_id:
                raise InvalidHandleError(
                    f"Streamer {handle!r} belongs to group {writer.group.number}, not {self.group.number}."
                )
            return writer.write(_byte_view(data, byte_count))

    def set_attribute(self, input_index: int, key: str, value: str) -> None:
        with self._lock:
            if self.attributes_sealed:
                raise AttributesSealedError(
                    f"Group {self.group.number}: attributes already written, cannot set '{key}'."
                )
            if not isinstance(input_index, int) or not 0 <= input_index < len(self.group.inputs):
                raise ArgumentError(f"Group {self.group.number}: unknown input index {input_index!r}.")
            self.group.inputs[input_index].attributes.set(key, value)

    def write_attributes(self) -> None:
        with self._lock:
            self.attributes_sealed = True
            for channel in self.group:
                if not channel.attributes.sealed:
                    self._write_attributes(channel)

    def write_eor_info(
        self,
        block_nr: int,
        trigger_time_ps: int,
        data_count: int,
        input_: int,
        board: int,
        stop_trigger_sample: int | None = None,
    ) -> BlockEntry:
        with self._lock:
            channel = self._channel(board, input_)
            handle = self._active.get(channel.key)
            if handle is None:
                raise ArgumentError(f"Input {channel.key}: no block is streaming.")
            writer = self._streamers.get(handle)
            if block_nr != writer.block:
                raise ArgumentError(
                    f"Input {channel.key}: block {block_nr!r} is not the streaming block {writer.block}."
                )
            entry = writer.finalize(data_count, trigger_time_ps, stop_trigger_sample)
            self._streamers.release(handle)
            del self._active[channel.key]
            return entry

    def close(self) -> None:
        """Finalize open blocks, then write pending headers and attributes."""
        with self._lock:
            if self.closed:
                raise InvalidHandleError(f"Group {self.group.number} already closed.")
            for key, handle in list(self._active.items()):
                writer = self._streamers.get(handle)
                bps = writer.channel.bytes_per_sample
                data_count = (writer.bytes_received // bps) * bps
                logger.warning(
                    "group %d input %s: block %d still streaming at close, finalizing %d bytes",
                    self.group_id, key, writer.block, data_count,
                )
                writer.finalize(data_count, 0)
                self._streamers.release(handle)
                del self._active[key]

            for channel in self.group:
                if channel.index not in self._inputs_on_disk:
                    self._write_input(channel)
                if not channel.attributes.sealed:
                    self._write_attributes(channel)
            self.closed = True
            logger.debug("group %d closed", self.group_id)
