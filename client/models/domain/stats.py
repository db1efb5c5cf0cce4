"""
Aggregate counters derived from an entity list
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping


@dataclass(frozen=True)
class AggregateStats:
    """
    Immutable mapping of counter name -> non-negative int.

    Missing counters read as 0. Reconcilers produce a new instance for every
    change; nothing mutates `counters` after construction.
    """
    counters: Mapping[str, int] = field(default_factory=dict)

    @classmethod
    def zeroed(cls, names: Iterable[str]) -> "AggregateStats":
        return cls(counters={name: 0 for name in names})

    def __getitem__(self, name: str) -> int:
        return self.counters.get(name, 0)

    def __contains__(self, name: str) -> bool:
        return name in self.counters

    def get(self, name: str, default: int = 0) -> int:
        return self.counters.get(name, default)

    def with_counters(self, updates: Mapping[str, int]) -> "AggregateStats":
        merged = dict(self.counters)
        merged.update(updates)
        return AggregateStats(counters=merged)

    def to_dict(self) -> Dict[str, int]:
        return dict(self.counters)

    @property
    def total(self) -> int:
        return self['total']
