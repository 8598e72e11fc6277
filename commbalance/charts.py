from __future__ import annotations

import logging
from pathlib import Path

import matplotlib.pyplot as plt
import seaborn as sns

from .report import BalanceStatistic

LOGGER = logging.getLogger("commbalance.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 300
plt.rcParams["font.size"] = 10
plt.rcParams["axes.labelsize"] = 11
plt.rcParams["axes.titlesize"] = 13

BAR_COLOR = "#2E86AB"
MEAN_COLOR = "#C73E1D"


def render_distribution_chart(statistic: BalanceStatistic, chart_path: Path) -> Path | None:
    """Render a per-device bar chart of task counts with the mean load marked."""

    if not statistic.counts:
        LOGGER.warning("No placements to chart for %r", statistic.title)
        return None

    chart_path.parent.mkdir(parents=True, exist_ok=True)
    df = statistic.to_frame()
    labels = [f"Comm {resource_id}" for resource_id in df["resource_id"]]

    fig, ax = plt.subplots(figsize=(10, 6))
    bars = ax.bar(
        labels,
        df["count"],
        color=BAR_COLOR,
        alpha=0.8,
        edgecolor="white",
        linewidth=2,
    )

    if statistic.mean is not None:
        ax.axhline(
            statistic.mean,
            color=MEAN_COLOR,
            linestyle="--",
            linewidth=1.5,
            label=f"Mean ({statistic.mean:.2f})",
        )
        ax.legend(loc="upper right")

    for bar, share in zip(bars, df["share_pct"]):
        height = bar.get_height()
        ax.text(
            bar.get_x() + bar.get_width() / 2.0,
            height,
            f"{int(height)} ({share:.1f}%)",
            ha="center",
            va="bottom",
            fontweight="semibold",
        )

    subtitle = ""
    if statistic.population_std_dev is not None:
        subtitle = f"\nstd dev = {statistic.population_std_dev:.2f}"
    ax.set_title(f"{statistic.title}{subtitle}", fontweight="bold", pad=15)
    ax.set_xlabel("Communication device", fontweight="semibold")
    ax.set_ylabel("Assigned tasks", fontweight="semibold")
    ax.grid(True, alpha=0.3, axis="y", linestyle="--")

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)
    return chart_path
