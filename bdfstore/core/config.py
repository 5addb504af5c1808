# bdfstore/core/config.py
from __future__ import annotations

from dataclasses import dataclass

from .exceptions import ArgumentError


@dataclass(frozen=True, slots=True)
class WriterConfig:
    """
    Tunables of the write path.

    - reduction_factor: samples folded into one min/max pair per curve level
    - max_reductions: upper bound on stored curve levels per block
    - transfer_size: maximum samples per DATA chunk (PreferredTransferSize)
    - temp_suffix: suffix of the working file until the container is promoted
    """
    reduction_factor: int = 16
    max_reductions: int = 8
    transfer_size: int = 65536
    temp_suffix: str = ".tmp"

    def __post_init__(self) -> None:
        if not isinstance(self.reduction_factor, int) or self.reduction_factor < 2:
            raise ArgumentError("WriterConfig.reduction_factor must be an int >= 2.")
        if not isinstance(self.max_reductions, int) or self.max_reductions < 0:
            raise ArgumentError("WriterConfig.max_reductions must be an int >= 0.")
        if not isinstance(self.transfer_size, int) or self.transfer_size < 1:
            raise ArgumentError("WriterConfig.transfer_size must be an int >= 1.")
        if not isinstance(self.temp_suffix, str) or not self.temp_suffix.startswith("."):
            raise ArgumentError("WriterConfig.temp_suffix must start with '.'.")
