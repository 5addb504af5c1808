# bdfstore/core/group.py
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterator

from .channel import InputChannel
from .exceptions import ArgumentError, InvalidHandleError
from .metadata import DateTime, OperationMode


@dataclass(slots=True)
class Group:
    """
    A cluster of inputs sharing one operation mode and one sample clock.

    Inputs are addressed by their registration index (0..n-1) or by
    (board_number, input_number).
    """
    number: int
    mode: OperationMode
    sample_rate: float
    start_time: DateTime
    timebase_divisor: int = 1
    trigger_sample: int = 0
    external_timebase: bool = False
    inputs: list[InputChannel] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.number, int) or self.number < 0:
            raise ArgumentError(f"Group number must be an int >= 0, got {self.number!r}")
        try:
            self.mode = OperationMode(self.mode)
        except ValueError as e:
            raise ArgumentError(f"Unknown operation mode {self.mode!r}") from e
        if (
            not isinstance(self.sample_rate, (int, float))
            or not math.isfinite(self.sample_rate)
            or self.sample_rate <= 0
        ):
            raise ArgumentError(f"Sample rate must be a finite number > 0, got {self.sample_rate!r}")
        self.sample_rate = float(self.sample_rate)
        if not isinstance(self.timebase_divisor, int) or self.timebase_divisor < 1:
            raise ArgumentError(f"Timebase divisor must be an int >= 1, got {self.timebase_divisor!r}")
        if not isinstance(self.trigger_sample, int) or self.trigger_sample < 0:
            raise ArgumentError(f"Trigger sample must be an int >= 0, got {self.trigger_sample!r}")
        if not isinstance(self.start_time, DateTime):
            raise ArgumentError("Group.start_time must be a DateTime instance.")

    def __len__(self) -> int:
        return len(self.inputs)

    def __iter__(self) -> Iterator[InputChannel]:
        return iter(self.inputs)

    def input(self, index: int) -> InputChannel:
        if not isinstance(index, int) or not 0 <= index < len(self.inputs):
            raise InvalidHandleError(f"Group {self.number}: unknown input {index!r}.")
        return self.inputs[index]

    def find(self, board_number: int, input_number: int) -> InputChannel | None:
        for channel in self.inputs:
            if channel.key == (board_number, input_number):
                return channel
        return None

    def register(self, channel: InputChannel) -> InputChannel:
        """Add a channel, or replace the unlocked channel with the same (board, input)."""
        existing = self.find(channel.board_number, channel.input_number)
        if existing is None:
            if channel.index != len(self.inputs):
                raise ArgumentError(
                    f"Input index {channel.index} does not follow {len(self.inputs) - 1}."
                )
            self.inputs.append(channel)
            return channel
        if existing.locked:
            raise ArgumentError(
                f"Input {channel.key} already streams, its header cannot change."
            )
        channel.index = existing.index
        channel.attributes = existing.attributes
        self.inputs[existing.index] = channel
        return channel
