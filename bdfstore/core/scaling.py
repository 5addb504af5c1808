# bdfstore/core/scaling.py
from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

from .exceptions import ArgumentError


@dataclass(frozen=True, slots=True)
class Scaling:
    """
    Stateless conversion between analog sample values, volts and physical units.

    volt = analog * bin_to_volt_factor + bin_to_volt_constant
    phys = volt * volt_to_physical_factor + volt_to_physical_constant

    The direct bin -> physical pair is the composition of both steps and is
    derived once here rather than per sample.
    """
    bin_to_volt_factor: float
    bin_to_volt_constant: float
    volt_to_physical_factor: float = 1.0
    volt_to_physical_constant: float = 0.0

    bin_to_physical_factor: float = field(init=False)
    bin_to_physical_constant: float = field(init=False)

    def __post_init__(self) -> None:
        for name in (
            "bin_to_volt_factor",
            "bin_to_volt_constant",
            "volt_to_physical_factor",
            "volt_to_physical_constant",
        ):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ArgumentError(f"Scaling.{name} must be a finite number, got {value!r}")
            object.__setattr__(self, name, float(value))

        if self.bin_to_volt_factor == 0.0:
            raise ArgumentError("Scaling.bin_to_volt_factor must be non-zero.")
        if self.volt_to_physical_factor == 0.0:
            raise ArgumentError("Scaling.volt_to_physical_factor must be non-zero.")

        object.__setattr__(
            self, "bin_to_physical_factor",
            self.bin_to_volt_factor * self.volt_to_physical_factor,
        )
        object.__setattr__(
            self, "bin_to_physical_constant",
            self.bin_to_volt_constant * self.volt_to_physical_factor
            + self.volt_to_physical_constant,
        )

    @classmethod
    def from_range(
        cls,
        range_: float,
        offset: float,
        bytes_per_sample: int,
        volt_to_physical_factor: float = 1.0,
        volt_to_physical_constant: float = 0.0,
    ) -> "Scaling":
        """Build the scaling of a signed word that spans `range_` volts around `offset`."""
        if not isinstance(range_, (int, float)) or not math.isfinite(range_) or range_ <= 0:
            raise ArgumentError(f"Input range must be a finite number > 0, got {range_!r}")
        if bytes_per_sample not in (2, 4):
            raise ArgumentError(f"bytes_per_sample must be 2 or 4, got {bytes_per_sample!r}")
        return cls(
            bin_to_volt_factor=float(range_) / float(2 ** (8 * bytes_per_sample)),
            bin_to_volt_constant=offset,
            volt_to_physical_factor=volt_to_physical_factor,
            volt_to_physical_constant=volt_to_physical_constant,
        )

    # forward direction
    def bin_to_volt(self, analog) -> np.ndarray:
        return np.asarray(analog, dtype=np.float64) * self.bin_to_volt_factor + self.bin_to_volt_constant

    def volt_to_physical(self, volt) -> np.ndarray:
        return np.asarray(volt, dtype=np.float64) * self.volt_to_physical_factor + self.volt_to_physical_constant

    def bin_to_physical(self, analog) -> np.ndarray:
        return (
            np.asarray(analog, dtype=np.float64) * self.bin_to_physical_factor
            + self.bin_to_physical_constant
        )

    # inverse direction
    def physical_to_volt(self, phys) -> np.ndarray:
        return (np.asarray(phys, dtype=np.float64) - self.volt_to_physical_constant) / self.volt_to_physical_factor

    def volt_to_bin(self, volt) -> np.ndarray:
        return (np.asarray(volt, dtype=np.float64) - self.bin_to_volt_constant) / self.bin_to_volt_factor

    def physical_envelope(self, mins, maxs) -> tuple[np.ndarray, np.ndarray]:
        """Scale analog min/max pairs; a negative factor swaps the extremes."""
        lo = self.bin_to_physical(mins)
        hi = self.bin_to_physical(maxs)
        if self.bin_to_physical_factor < 0:
            return hi, lo
        return lo, hi

    def agrees_with(self, factor: float, constant: float) -> bool:
        """Check stored derived constants against the composition of both steps."""
        return bool(
            np.isclose(factor, self.bin_to_physical_factor, rtol=1e-12, atol=0.0)
            and np.isclose(constant, self.bin_to_physical_constant, rtol=1e-12, atol=1e-12)
        )
