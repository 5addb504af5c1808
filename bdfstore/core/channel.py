# bdfstore/core/channel.py
from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from .attributes import AttributeStore
from .block import BlockDirectory
from .exceptions import ArgumentError
from .metadata import InputInfo
from .scaling import Scaling

_WORD_DTYPES = {2: (np.dtype("<u2"), np.dtype("<i2")), 4: (np.dtype("<u4"), np.dtype("<i4"))}


def word_size(analog_mask: int, marker_mask: int) -> int:
    """
    Validate a mask pair and return the bytes per sample it describes.

    The masks must be disjoint and together cover exactly a 16- or 32-bit word.
    """
    for name, mask in (("analog_mask", analog_mask), ("marker_mask", marker_mask)):
        if not isinstance(mask, int) or mask < 0 or mask > 0xFFFFFFFF:
            raise ArgumentError(f"{name} must be an unsigned 32-bit int, got {mask!r}")
    if analog_mask == 0:
        raise ArgumentError("analog_mask must select at least one bit.")
    if analog_mask & marker_mask:
        raise ArgumentError(
            f"analog_mask 0x{analog_mask:X} and marker_mask 0x{marker_mask:X} overlap."
        )
    union = analog_mask | marker_mask
    if union == 0xFFFF:
        return 2
    if union == 0xFFFFFFFF:
        return 4
    raise ArgumentError(
        f"analog_mask | marker_mask = 0x{union:X} does not cover a 16- or 32-bit word."
    )


@dataclass(slots=True)
class InputChannel:
    """
    Static descriptor of one acquisition input inside a group.

    Sample words are little-endian. The analog part is the word masked with
    analog_mask and read as a signed integer of the word width; marker bits
    are the word masked with marker_mask.
    """
    board_number: int
    input_number: int
    index: int
    analog_mask: int
    marker_mask: int
    scaling: Scaling
    bytes_per_sample: int = field(init=False)
    attributes: AttributeStore = field(default_factory=AttributeStore, repr=False)
    blocks: BlockDirectory = field(default_factory=BlockDirectory, repr=False)
    locked: bool = field(default=False, repr=False)

    def __post_init__(self) -> None:
        self.bytes_per_sample = word_size(self.analog_mask, self.marker_mask)

    @classmethod
    def from_header(
        cls,
        board_number: int,
        input_number: int,
        index: int,
        analog_mask: int,
        marker_mask: int,
        range_: float,
        offset: float,
        volt_to_physical_factor: float,
        volt_to_physical_constant: float,
    ) -> "InputChannel":
        bps = word_size(analog_mask, marker_mask)
        scaling = Scaling.from_range(
            range_, offset, bps, volt_to_physical_factor, volt_to_physical_constant
        )
        return cls(
            board_number=board_number,
            input_number=input_number,
            index=index,
            analog_mask=analog_mask,
            marker_mask=marker_mask,
            scaling=scaling,
        )

    @property
    def key(self) -> tuple[int, int]:
        return self.board_number, self.input_number

    @property
    def number_of_marker_bits(self) -> int:
        return bin(self.marker_mask).count("1")

    @property
    def resolution_in_bits(self) -> int:
        return bin(self.analog_mask).count("1")

    @property
    def word_dtype(self) -> np.dtype:
        return _WORD_DTYPES[self.bytes_per_sample][0]

    @property
    def signed_dtype(self) -> np.dtype:
        return _WORD_DTYPES[self.bytes_per_sample][1]

    # ---- sample word decoding ----
    def words(self, raw: bytes | memoryview | np.ndarray) -> np.ndarray:
        return np.frombuffer(raw, dtype=self.word_dtype)

    def analog(self, words: np.ndarray) -> np.ndarray:
        masked = np.bitwise_and(words, self.word_dtype.type(self.analog_mask))
        return masked.view(self.signed_dtype).astype(np.int32)

    def markers(self, words: np.ndarray) -> np.ndarray:
        return np.bitwise_and(words, self.word_dtype.type(self.marker_mask))

    def info(self) -> InputInfo:
        s = self.scaling
        return InputInfo(
            bytes_per_sample=self.bytes_per_sample,
            analog_mask=self.analog_mask,
            marker_mask=self.marker_mask,
            number_of_marker_bits=self.number_of_marker_bits,
            resolution_in_bits=self.resolution_in_bits,
            bin_to_volt_factor=s.bin_to_volt_factor,
            bin_to_volt_constant=s.bin_to_volt_constant,
            volt_to_physical_factor=s.volt_to_physical_factor,
            volt_to_physical_constant=s.volt_to_physical_constant,
            bin_to_physical_factor=s.bin_to_physical_factor,
            bin_to_physical_constant=s.bin_to_physical_constant,
            board_number=self.board_number,
            input_number=self.input_number,
        )
