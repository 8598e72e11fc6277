from __future__ import annotations

import collections
from collections.abc import Iterator, Mapping
from typing import Iterable, Protocol


class Placement(Protocol):
    @property
    def assigned_resource_id(self) -> int | None: ...


class DistributionTable(Mapping[int, int]):
    """Immutable resource id -> task count mapping, iterated in ascending id order."""

    __slots__ = ("_counts",)

    def __init__(self, counts: Mapping[int, int] | None = None) -> None:
        self._counts: dict[int, int] = {
            int(resource_id): int(count)
            for resource_id, count in sorted((counts or {}).items())
            if count > 0
        }

    def __getitem__(self, resource_id: int) -> int:
        return self._counts[resource_id]

    def __iter__(self) -> Iterator[int]:
        return iter(self._counts)

    def __len__(self) -> int:
        return len(self._counts)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, DistributionTable):
            return self._counts == other._counts
        if isinstance(other, Mapping):
            return self._counts == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(self._counts.items()))

    def __repr__(self) -> str:
        return f"DistributionTable({self._counts!r})"

    @property
    def total(self) -> int:
        return sum(self._counts.values())

    def resource_ids(self) -> list[int]:
        return list(self._counts)

    def counts(self) -> list[int]:
        return list(self._counts.values())


def aggregate(records: Iterable[Placement]) -> DistributionTable:
    """Fold task placements into a fresh ``DistributionTable``.

    Records without a resource id are skipped. Callers must not pass the same
    task twice in one call.
    """

    counter: collections.Counter[int] = collections.Counter(
        record.assigned_resource_id
        for record in records
        if record.assigned_resource_id is not None
    )
    return DistributionTable(counter)
