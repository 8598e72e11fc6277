from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from .aggregate import DistributionTable

RULE_WIDTH = 50
BAR_CHAR = "█"


@dataclass(frozen=True)
class BalanceStatistic:
    """Share of tasks per resource and the population std dev of the counts."""

    title: str
    total: int
    counts: dict[int, int] = field(default_factory=dict)
    shares: dict[int, float] = field(default_factory=dict)
    population_std_dev: float | None = None

    @property
    def resource_count(self) -> int:
        return len(self.counts)

    @property
    def mean(self) -> float | None:
        if not self.counts:
            return None
        return self.total / len(self.counts)

    def render(self) -> str:
        lines = ["", self.title, "=" * RULE_WIDTH]
        if not self.counts:
            lines.append("No task placements observed")
        for resource_id, count in self.counts.items():
            share = self.shares[resource_id]
            bar = BAR_CHAR * math.floor(share / 2)
            lines.append(f"Comm {resource_id}: {count:2d} tasks ({share:5.1f}%) {bar}".rstrip())
        if self.population_std_dev is not None:
            lines.append("")
            lines.append(
                f"Load balance (std dev): {self.population_std_dev:.2f} (lower is more balanced)"
            )
        lines.append("=" * RULE_WIDTH)
        return "\n".join(lines)

    def to_frame(self) -> pd.DataFrame:
        if not self.counts:
            return pd.DataFrame(columns=["resource_id", "count", "share_pct"])
        return pd.DataFrame(
            {
                "resource_id": list(self.counts.keys()),
                "count": list(self.counts.values()),
                "share_pct": [round(self.shares[r], 1) for r in self.counts],
            }
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "title": self.title,
            "total": self.total,
            "counts": {str(r): c for r, c in self.counts.items()},
            "shares": {str(r): round(s, 1) for r, s in self.shares.items()},
            "population_std_dev": self.population_std_dev,
        }


def population_std_dev(counts: list[int]) -> float | None:
    """Std dev with divisor k; ``None`` when fewer than two resources are present."""

    if len(counts) < 2:
        return None
    return float(np.std(np.asarray(counts, dtype=float), ddof=0))


def report(table: DistributionTable, title: str) -> BalanceStatistic:
    counts = dict(table.items())
    total = sum(counts.values())
    if total == 0:
        shares = {resource_id: 0.0 for resource_id in counts}
        return BalanceStatistic(title=title, total=0, counts=counts, shares=shares)

    shares = {resource_id: 100.0 * count / total for resource_id, count in counts.items()}
    return BalanceStatistic(
        title=title,
        total=total,
        counts=counts,
        shares=shares,
        population_std_dev=population_std_dev(list(counts.values())),
    )
