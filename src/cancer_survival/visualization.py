"""Descriptive charts and the Kaplan-Meier survival curve.

Each chart is described by a ``ChartSpec`` and rendered to a PNG file by
``render_chart``. Rendering never modifies the input table.
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union, List
import math
import numpy as np
import pandas as pd

import matplotlib

matplotlib.use("Agg")  # headless
import matplotlib.pyplot as plt  # noqa: E402

from cancer_survival.config import DataConfig, PlotConfig  # noqa: E402
from cancer_survival.exceptions import PlotError  # noqa: E402
from cancer_survival.survival import KaplanMeierResult  # noqa: E402
from cancer_survival.utils import ensure_dir  # noqa: E402


class ChartKind(str, Enum):
    """Supported descriptive chart types."""
    BAR = "bar"
    FACETED_BAR = "faceted_bar"
    BOXPLOT = "boxplot"
    HISTOGRAM = "histogram"


@dataclass
class ChartSpec:
    """Description of one descriptive chart.

    Attributes:
        kind: Chart type
        filename: Output PNG file name
        x: Categorical column (bar, faceted_bar, grouped boxplot) or numeric
            column (histogram); None for a single boxplot
        y: Numeric column summarized by a boxplot
        group: Column stacking bars or stratifying histogram bars
        facet: Column splitting a faceted bar chart into panels
        bins: Histogram bin count; None uses ``PlotConfig.histogram_bins``
        title: Chart title
        xlabel: X axis label (defaults to the column name)
        ylabel: Y axis label
    """
    kind: Union[ChartKind, str]
    filename: str
    x: Optional[str] = None
    y: Optional[str] = None
    group: Optional[str] = None
    facet: Optional[str] = None
    bins: Optional[int] = None
    title: str = ""
    xlabel: Optional[str] = None
    ylabel: Optional[str] = None


def default_chart_specs(config: Optional[DataConfig] = None) -> List[ChartSpec]:
    """Return the fixed set of descriptive charts for the patient table."""
    c = config or DataConfig()
    return [
        ChartSpec(
            kind=ChartKind.BAR, filename="01_deprivation_counts.png",
            x=c.deprivation_column,
            xlabel="Deprivation Score", ylabel="Number of Patients",
            title="Distribution of deprivation score for breast cancer patients",
        ),
        ChartSpec(
            kind=ChartKind.FACETED_BAR, filename="02_deprivation_by_region.png",
            x=c.deprivation_column, facet=c.region_column,
            xlabel="Deprivation Score", ylabel="Number of Patients",
            title="Distribution of deprivation score for breast cancer patients in each region",
        ),
        ChartSpec(
            kind=ChartKind.BOXPLOT, filename="03_age_at_diagnosis.png",
            y=c.age_column, ylabel="Age at Diagnosis",
            title="Distribution of age at diagnosis for breast cancer patients",
        ),
        ChartSpec(
            kind=ChartKind.BOXPLOT, filename="04_age_by_deprivation.png",
            x=c.deprivation_column, y=c.age_column,
            xlabel="Deprivation index", ylabel="Age at diagnosis",
            title="Age at diagnosis by deprivation index",
        ),
        ChartSpec(
            kind=ChartKind.BOXPLOT, filename="05_age_by_region.png",
            x=c.region_column, y=c.age_column,
            xlabel="Region", ylabel="Age at diagnosis",
            title="Age at diagnosis of breast cancer patients by region",
        ),
        ChartSpec(
            kind=ChartKind.HISTOGRAM, filename="06_survival_time_by_status.png",
            x=c.time_column, group=c.status_column, bins=10,
            xlabel="Survival time", ylabel="Number of Patients",
            title="Histogram of survival time for breast cancer patients",
        ),
        ChartSpec(
            kind=ChartKind.BOXPLOT, filename="07_survival_time_by_deprivation.png",
            x=c.deprivation_column, y=c.time_column,
            xlabel="Deprivation index", ylabel="Survival time",
            title="Survival time of breast cancer patients by deprivation index",
        ),
        ChartSpec(
            kind=ChartKind.FACETED_BAR, filename="08_deprivation_status_by_region.png",
            x=c.deprivation_column, group=c.status_column, facet=c.region_column,
            xlabel="Deprivation index", ylabel="Number of Patients",
            title="Patients in each deprivation group by region, coloured by survival status",
        ),
    ]


def _levels(series: pd.Series) -> list:
    if isinstance(series.dtype, pd.CategoricalDtype):
        return list(series.cat.categories)
    return sorted(series.dropna().unique().tolist())


def _validate(df: pd.DataFrame, spec: ChartSpec) -> ChartKind:
    try:
        kind = ChartKind(spec.kind)
    except ValueError as e:
        raise PlotError(f"Unknown chart kind '{spec.kind}' for {spec.filename}") from e

    required = {
        ChartKind.BAR: ("x",),
        ChartKind.FACETED_BAR: ("x", "facet"),
        ChartKind.BOXPLOT: ("y",),
        ChartKind.HISTOGRAM: ("x", "group"),
    }[kind]
    for name in required:
        if getattr(spec, name) is None:
            raise PlotError(f"{kind.value} chart {spec.filename} requires '{name}'")

    for name in ("x", "y", "group", "facet"):
        column = getattr(spec, name)
        if column is not None and column not in df.columns:
            raise PlotError(f"Column '{column}' ({name}) not found for {spec.filename}")

    numeric = {ChartKind.BOXPLOT: spec.y, ChartKind.HISTOGRAM: spec.x}.get(kind)
    if numeric is not None and not pd.api.types.is_numeric_dtype(df[numeric]):
        raise PlotError(f"Column '{numeric}' must be numeric for a {kind.value} chart")

    if kind is ChartKind.HISTOGRAM:
        n_groups = len(_levels(df[spec.group]))
        if n_groups != 2:
            raise PlotError(
                f"Histogram group '{spec.group}' must be binary, found {n_groups} levels"
            )
    if spec.bins is not None and spec.bins < 1:
        raise PlotError(f"bins must be positive, got {spec.bins}")

    return kind


def _counts(df: pd.DataFrame, x: str, x_levels: list, group: Optional[str], group_levels: list):
    if group is None:
        return df[x].value_counts().reindex(x_levels, fill_value=0)
    return (
        pd.crosstab(df[x], df[group], dropna=False)
        .reindex(index=x_levels, columns=group_levels, fill_value=0)
    )


def _plot_counts(ax, counts, color):
    if isinstance(counts, pd.DataFrame):
        counts.plot(kind="bar", stacked=True, ax=ax, legend=False, rot=0)
    else:
        counts.plot(kind="bar", ax=ax, color=color, rot=0)


def _bar(df, spec, fig_cfg):
    fig, ax = plt.subplots(figsize=fig_cfg.figsize)
    group_levels = _levels(df[spec.group]) if spec.group else []
    counts = _counts(df, spec.x, _levels(df[spec.x]), spec.group, group_levels)
    _plot_counts(ax, counts, fig_cfg.bar_color)
    if spec.group:
        ax.legend(title=spec.group)
    ax.set_xlabel(spec.xlabel or spec.x)
    ax.set_ylabel(spec.ylabel or "Count")
    return fig


def _faceted_bar(df, spec, fig_cfg):
    facets = _levels(df[spec.facet])
    if not facets:
        raise PlotError(f"Facet column '{spec.facet}' has no values")
    ncols = min(3, len(facets))
    nrows = math.ceil(len(facets) / ncols)
    fig, axes = plt.subplots(
        nrows, ncols, figsize=(4 * ncols, 3.5 * nrows), sharey=True, squeeze=False
    )

    x_levels = _levels(df[spec.x])
    group_levels = _levels(df[spec.group]) if spec.group else []
    colors = plt.get_cmap("tab10")
    for i, level in enumerate(facets):
        ax = axes[i // ncols][i % ncols]
        subset = df[df[spec.facet] == level]
        counts = _counts(subset, spec.x, x_levels, spec.group, group_levels)
        _plot_counts(ax, counts, colors(i % 10))
        ax.set_title(str(level))
        ax.set_xlabel(spec.xlabel or spec.x)
        ax.set_ylabel(spec.ylabel or "Count")
        ax.tick_params(axis="x", labelrotation=45)

    for j in range(len(facets), nrows * ncols):
        axes[j // ncols][j % ncols].set_visible(False)

    if spec.group:
        handles, labels = axes[0][0].get_legend_handles_labels()
        fig.legend(handles, labels, title=spec.group, loc="upper right")
    return fig


def _boxplot(df, spec, fig_cfg):
    fig, ax = plt.subplots(figsize=fig_cfg.figsize)
    if spec.x is None:
        labels = [""]
        data = [df[spec.y].dropna().to_numpy()]
        fills = [fig_cfg.box_color]
    else:
        labels = _levels(df[spec.x])
        data = [df.loc[df[spec.x] == level, spec.y].dropna().to_numpy() for level in labels]
        cmap = plt.get_cmap("tab10")
        fills = [cmap(i % 10) for i in range(len(labels))]

    positions = np.arange(1, len(data) + 1)
    boxes = ax.boxplot(data, positions=positions, patch_artist=True)
    for patch, fill in zip(boxes["boxes"], fills):
        patch.set_facecolor(fill)

    means = [d.mean() if len(d) else np.nan for d in data]
    ax.scatter(
        positions, means,
        marker=fig_cfg.mean_marker, s=fig_cfg.mean_marker_size ** 2,
        color=fig_cfg.mean_color, zorder=3, label="Mean",
    )
    ax.set_xticks(positions)
    ax.set_xticklabels([str(label) for label in labels])
    if spec.x is not None:
        ax.set_xlabel(spec.xlabel or spec.x)
    ax.set_ylabel(spec.ylabel or spec.y)
    return fig


def _histogram(df, spec, fig_cfg):
    fig, ax = plt.subplots(figsize=fig_cfg.figsize)
    bins = spec.bins or fig_cfg.histogram_bins
    values = df[spec.x].dropna().to_numpy(dtype=float)
    edges = np.histogram_bin_edges(values, bins=bins)

    levels = _levels(df[spec.group])
    data = [df.loc[df[spec.group] == level, spec.x].dropna().to_numpy(dtype=float) for level in levels]
    # A list of arrays draws the groups side by side within each bin
    ax.hist(data, bins=edges, label=[str(level) for level in levels])
    ax.legend(title=spec.group)
    ax.set_xlabel(spec.xlabel or spec.x)
    ax.set_ylabel(spec.ylabel or "Count")
    return fig


_RENDERERS = {
    ChartKind.BAR: _bar,
    ChartKind.FACETED_BAR: _faceted_bar,
    ChartKind.BOXPLOT: _boxplot,
    ChartKind.HISTOGRAM: _histogram,
}


def render_chart(
    df: pd.DataFrame,
    spec: ChartSpec,
    out_dir: Union[str, Path],
    config: Optional[PlotConfig] = None,
) -> Path:
    """Render one descriptive chart to ``out_dir/spec.filename``.

    Args:
        df: Recoded patient table (not modified)
        spec: Chart description
        out_dir: Directory for the PNG file (created if missing)
        config: Styling; defaults to ``PlotConfig()``

    Returns:
        Path of the written image

    Raises:
        PlotError: If the kind is unknown, a required field is missing, a
            referenced column does not exist, a numeric column is not numeric
            or a histogram group is not binary

    Example:
        >>> path = render_chart(df, ChartSpec("bar", "dep.png", x="deprivation_score"), "figures")
    """
    config = config or PlotConfig()
    kind = _validate(df, spec)

    ensure_dir(str(out_dir))
    out_path = Path(out_dir) / spec.filename

    fig = _RENDERERS[kind](df, spec, config)
    try:
        if spec.title:
            fig.suptitle(spec.title)
        fig.tight_layout()
        fig.savefig(out_path, dpi=config.dpi)
    finally:
        plt.close(fig)

    return out_path


def plot_survival_curve(
    km: KaplanMeierResult,
    out_path: Union[str, Path],
    show_ci: bool = True,
    title: str = "Kaplan-Meier survival curve for patients with breast cancer",
    xlabel: str = "Years",
    ylabel: str = "Survival Probability",
    config: Optional[PlotConfig] = None,
) -> Path:
    """Plot the Kaplan-Meier step function with an optional confidence band.

    Args:
        km: Fitted Kaplan-Meier result
        out_path: Destination PNG path (parent directory created if missing)
        show_ci: Overlay the pointwise confidence band
        title: Chart title
        xlabel: X axis label
        ylabel: Y axis label
        config: Styling; defaults to ``PlotConfig()``

    Returns:
        Path of the written image
    """
    config = config or PlotConfig()
    out_path = Path(out_path)
    ensure_dir(str(out_path.parent))

    fig, ax = plt.subplots(figsize=config.figsize)
    try:
        ax.step(km.timeline, km.survival, where="post", color="black", label="Kaplan-Meier estimate")
        if show_ci:
            level = round(100 * (1 - km.alpha))
            ax.fill_between(
                km.timeline, km.ci_lower, km.ci_upper,
                step="post", alpha=config.ci_alpha, color="grey",
                label=f"{level}% confidence interval",
            )
        ax.set_ylim(0.0, 1.05)
        ax.set_xlim(left=0.0)
        ax.set_xlabel(xlabel)
        ax.set_ylabel(ylabel)
        ax.set_title(title)
        ax.legend(loc="lower left")
        ax.grid(True, alpha=0.3)
        fig.tight_layout()
        fig.savefig(out_path, dpi=config.dpi)
    finally:
        plt.close(fig)

    return out_path
