# bdfstore/core/attributes.py
from __future__ import annotations

from typing import Iterable, Iterator, Mapping

from .exceptions import ArgumentError, AttributesSealedError

ATTRIBUTE_VALUE_MAX = 4096


class AttributeStore:
    """
    Per-input string table (channel name, physical unit, ...).

    Write-once: after seal() every mutation raises AttributesSealedError.
    """

    __slots__ = ("_items", "_sealed")

    def __init__(self, items: Mapping[str, str] | None = None, *, sealed: bool = False) -> None:
        self._items: dict[str, str] = {}
        self._sealed = False
        for key, value in (items or {}).items():
            self.set(key, value)
        self._sealed = sealed

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self) -> None:
        self._sealed = True

    def set(self, key: str, value: str) -> None:
        if self._sealed:
            raise AttributesSealedError(f"Attributes are sealed, cannot set '{key}'.")
        if not isinstance(key, str) or not key:
            raise ArgumentError("Attribute key must be a non-empty string.")
        if not isinstance(value, str):
            raise ArgumentError(f"Attribute value for '{key}' must be a string.")
        if len(value) > ATTRIBUTE_VALUE_MAX:
            raise ArgumentError(
                f"Attribute value for '{key}' exceeds {ATTRIBUTE_VALUE_MAX} characters."
            )
        self._items[key] = value

    def get(self, key: str, default: str | None = None) -> str | None:
        return self._items.get(key, default)

    def __getitem__(self, key: str) -> str:
        try:
            return self._items[key]
        except KeyError as e:
            raise ArgumentError(f"Attribute '{key}' not set.") from e

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def items(self) -> Iterable[tuple[str, str]]:
        return self._items.items()

    def copy(self) -> dict[str, str]:
        return dict(self._items)
