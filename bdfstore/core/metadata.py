# bdfstore/core/metadata.py
from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass
from enum import IntEnum

from .exceptions import ArgumentError


# Attribute keys with defined semantics.
CH_NAME = "ChName"
CH_PHYS_UNIT = "ChPhysUnit"
CH_PHYS_UNIT_EXT = "ChPhysUnitExt"


class OperationMode(IntEnum):
    """Recording mode of a group."""

    CONTINUOUS = 0
    SINGLE_EVENT_RECORDER = 1
    MULTI_EVENT_RECORDER = 2
    SINGLE_EVENT_RECORDER_DUAL = 3
    MULTI_EVENT_RECORDER_DUAL = 4

    @property
    def is_dual(self) -> bool:
        return self in (
            OperationMode.SINGLE_EVENT_RECORDER_DUAL,
            OperationMode.MULTI_EVENT_RECORDER_DUAL,
        )

    @property
    def independent_inputs(self) -> bool:
        """Inputs trigger on their own, so block counts may diverge."""
        return self in (
            OperationMode.SINGLE_EVENT_RECORDER,
            OperationMode.SINGLE_EVENT_RECORDER_DUAL,
        )


@dataclass(frozen=True, slots=True)
class DateTime:
    """Calendar timestamp of a start command, millisecond resolution."""
    year: int
    month: int
    day: int
    hour: int = 0
    minute: int = 0
    second: int = 0
    millisecond: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.millisecond < 1000:
            raise ArgumentError(f"DateTime.millisecond out of range: {self.millisecond}")
        try:
            self.to_datetime()
        except (TypeError, ValueError) as e:
            raise ArgumentError(f"Invalid DateTime: {e}") from e

    @classmethod
    def from_datetime(cls, value: _dt.datetime) -> "DateTime":
        return cls(
            year=value.year,
            month=value.month,
            day=value.day,
            hour=value.hour,
            minute=value.minute,
            second=value.second,
            millisecond=value.microsecond // 1000,
        )

    @classmethod
    def now(cls) -> "DateTime":
        return cls.from_datetime(_dt.datetime.now())

    def to_datetime(self) -> _dt.datetime:
        return _dt.datetime(
            self.year, self.month, self.day,
            self.hour, self.minute, self.second,
            self.millisecond * 1000,
        )


@dataclass(frozen=True, slots=True)
class InputInfo:
    """Public description of one input channel."""
    bytes_per_sample: int
    analog_mask: int
    marker_mask: int
    number_of_marker_bits: int
    resolution_in_bits: int
    bin_to_volt_factor: float
    bin_to_volt_constant: float
    volt_to_physical_factor: float
    volt_to_physical_constant: float
    bin_to_physical_factor: float
    bin_to_physical_constant: float
    board_number: int
    input_number: int


@dataclass(frozen=True, slots=True)
class BlockInfo:
    """
    Public description of one recorded block.

    Reduction curve k (1-based) holds one min/max pair per
    reduction_factor**k samples.
    """
    reduction_factor: int
    number_of_reductions: int
    preferred_transfer_size: int
    block_length: int
    external_timebase: bool
    sample_rate_hertz: float
    timebase_divisor: int
    start_time: DateTime
    trigger_time_seconds: float
    trigger_sample: int
    stop_trigger_sample: int

    @property
    def effective_sample_rate(self) -> float:
        return self.sample_rate_hertz / self.timebase_divisor
