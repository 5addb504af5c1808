# bdfstore/core/timeseries.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

import numpy as np

from .exceptions import InvalidTimeSeries


def _checked(time, values) -> tuple[np.ndarray, np.ndarray]:
    t = np.asarray(time)
    v = np.asarray(values)

    if t.ndim != 1:
        raise InvalidTimeSeries(f"`time` must be 1D, got shape {t.shape}")
    if v.ndim != 1:
        raise InvalidTimeSeries(f"`values` must be 1D, got shape {v.shape}")
    if t.size != v.size:
        raise InvalidTimeSeries(
            f"`time` and `values` must have same length, got {t.size} vs {v.size}"
        )
    if t.size > 0:
        if not np.isfinite(t).all():
            raise InvalidTimeSeries("`time` contains non-finite values (NaN/Inf).")
        if np.any(np.diff(t) < 0):
            raise InvalidTimeSeries("`time` must be monotonic non-decreasing.")
    return t, v


def block_time(n: int, trigger_sample: int, sample_rate: float) -> np.ndarray:
    """Time vector of a block: zero at the trigger sample, 1 / sample_rate apart."""
    return (np.arange(n, dtype=np.float64) - float(trigger_sample)) / sample_rate


@dataclass(frozen=True, slots=True)
class TimeSeries:
    """Immutable (eager) time series: 1D time vector + 1D values vector."""

    time: np.ndarray = field(repr=False)
    values: np.ndarray = field(repr=False)
    unit: str | None = None
    name: str | None = None
    attrs: dict[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        t, v = _checked(self.time, self.values)
        if self.attrs is None:
            object.__setattr__(self, "attrs", {})
        elif not isinstance(self.attrs, dict):
            raise InvalidTimeSeries("`attrs` must be a dict.")
        object.__setattr__(self, "time", t)
        object.__setattr__(self, "values", v)

    @property
    def n(self) -> int:
        return int(self.time.size)


@dataclass(slots=True)
class LazyTimeSeries:
    """Block-backed time series: reads samples on first access and caches them."""

    loader: Callable[[], tuple[np.ndarray, np.ndarray]] = field(repr=False)
    unit: str | None = None
    name: str | None = None
    attrs: dict[str, Any] = field(default_factory=dict, repr=False)

    _series: TimeSeries | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if not callable(self.loader):
            raise InvalidTimeSeries("LazyTimeSeries.loader must be callable.")
        if self.attrs is None:
            self.attrs = {}
        elif not isinstance(self.attrs, dict):
            raise InvalidTimeSeries("`attrs` must be a dict.")

    @property
    def loaded(self) -> bool:
        return self._series is not None

    def materialize(self) -> TimeSeries:
        if self._series is None:
            t, v = self.loader()
            self._series = TimeSeries(
                time=t, values=v, unit=self.unit, name=self.name, attrs=self.attrs.copy()
            )
        return self._series

    @property
    def time(self) -> np.ndarray:
        return self.materialize().time

    @property
    def values(self) -> np.ndarray:
        return self.materialize().values

    @property
    def n(self) -> int:
        return self.materialize().n
