from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

"""Immutable code domain for one import session.

A CodeDomain maps each code field to the ordered list of allowed code
descriptions. It is computed once per validation pass and handed explicitly to
every validation call; nothing mutates it afterwards.
"""

__all__ = [
    "CodeDomain",
]


@dataclass(frozen=True)
class CodeDomain(Mapping[str, tuple[str, ...]]):
    """Read-only field -> allowed values mapping (order as returned by the store)."""
    _values: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    _members: Mapping[str, frozenset[str]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        frozen = {k: tuple(v) for k, v in self._values.items()}
        object.__setattr__(self, "_values", MappingProxyType(frozen))
        object.__setattr__(
            self, "_members", MappingProxyType({k: frozenset(v) for k, v in frozen.items()})
        )

    @classmethod
    def build(cls, values: Mapping[str, list[str] | tuple[str, ...]]) -> CodeDomain:
        return cls(dict(values))

    def __getitem__(self, key: str) -> tuple[str, ...]:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def allows(self, field_name: str, value: str) -> bool:
        """Exact membership test; unknown fields allow nothing."""
        members = self._members.get(field_name)
        return members is not None and value in members

    def valid_values(self, field_name: str) -> list[str]:
        return list(self._values.get(field_name, ()))
