"""
Registry base - string key to entry mapping, immutable once frozen.

Plugins register entries at boot; after `freeze()` any further registration
raises RegistryFrozenError, and lookups of unknown keys raise the
registry-specific UnknownRegistryKey subclass.
"""

from collections.abc import Iterator
from typing import Generic, TypeVar

from workflow_engine.core.exceptions import RegistryFrozenError, UnknownRegistryKey

T = TypeVar("T")


class Registry(Generic[T]):
    """Keyed registry of workflow vocabulary."""

    name = "registry"
    not_found_error: type[UnknownRegistryKey] = UnknownRegistryKey

    def __init__(self) -> None:
        self._entries: dict[str, T] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def register(self, key: str, entry: T) -> T:
        if self._frozen:
            raise RegistryFrozenError(self.name, key)
        if key in self._entries:
            raise ValueError(f"{self.name} '{key}' is already registered")
        self._entries[key] = entry
        return entry

    def get(self, key: str) -> T:
        try:
            return self._entries[key]
        except KeyError:
            raise self.not_found_error(key) from None

    def has(self, key: str) -> bool:
        return key in self._entries

    def keys(self) -> list[str]:
        return list(self._entries)

    def values(self) -> list[T]:
        return list(self._entries.values())

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        state = "frozen" if self._frozen else "open"
        return f"<{self.__class__.__name__}({len(self)} entries, {state})>"
