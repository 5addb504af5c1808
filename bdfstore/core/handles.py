# bdfstore/core/handles.py
"""
Generation-checked handles.

A handle is an (index, generation) pair into a HandleArena. Releasing a slot
bumps its generation, so a stale handle never resolves to whatever object
later reuses the slot.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import ClassVar, Generic, Iterator, TypeVar

from .exceptions import InvalidHandleError

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Handle:
    index: int
    generation: int = 0


@dataclass(frozen=True, slots=True)
class GroupHandle(Handle):
    """Handle of a writable group. GroupHandle.DEFAULT addresses the first live group."""

    DEFAULT: ClassVar["GroupHandle"]

    @property
    def is_default(self) -> bool:
        return self.index < 0


GroupHandle.DEFAULT = GroupHandle(-1, 0)


@dataclass(frozen=True, slots=True)
class StreamerHandle(Handle):
    """Handle of a StreamWriter bound to one (group, input, block)."""


class HandleArena(Generic[T]):
    """
    Slot storage resolving handles in O(1).

    With reuse=False indices grow monotonically and are never handed out twice.
    """

    def __init__(self, handle_type: type[Handle], *, reuse: bool = True) -> None:
        self._handle_type = handle_type
        self._reuse = reuse
        self._slots: list[T | None] = []
        self._generations: list[int] = []
        self._free: list[int] = []
        self._lock = threading.Lock()

    def insert(self, obj: T) -> Handle:
        with self._lock:
            if self._reuse and self._free:
                index = self._free.pop()
                self._slots[index] = obj
            else:
                index = len(self._slots)
                self._slots.append(obj)
                self._generations.append(0)
            return self._handle_type(index, self._generations[index])

    def get(self, handle: Handle) -> T:
        if not isinstance(handle, self._handle_type):
            raise InvalidHandleError(
                f"Expected a {self._handle_type.__name__}, got {type(handle).__name__}."
            )
        i = handle.index
        if not 0 <= i < len(self._slots) or self._generations[i] != handle.generation:
            raise InvalidHandleError(f"Stale or unknown handle {handle!r}.")
        obj = self._slots[i]
        if obj is None:
            raise InvalidHandleError(f"Handle {handle!r} was released.")
        return obj

    def release(self, handle: Handle) -> T:
        with self._lock:
            obj = self.get(handle)
            i = handle.index
            self._slots[i] = None
            self._generations[i] += 1
            if self._reuse:
                self._free.append(i)
            return obj

    def __contains__(self, handle: object) -> bool:
        try:
            self.get(handle)  # type: ignore[arg-type]
        except InvalidHandleError:
            return False
        return True

    def __len__(self) -> int:
        return sum(1 for obj in self._slots if obj is not None)

    def items(self) -> Iterator[tuple[Handle, T]]:
        for i, obj in enumerate(self._slots):
            if obj is not None:
                yield self._handle_type(i, self._generations[i]), obj
