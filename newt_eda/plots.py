"""
Static figures: exploratory charts, the occurrence map and terrain panels.

Each function draws one figure, writes it as PNG and returns the path.
"""

import logging
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import geopandas as gpd
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib.colors import TwoSlopeNorm

from .config import MAP_VIEWPORT, UNCERTAINTY_BREAKS, YEAR_BREAKS, YEAR_DOMAIN
from .geo import bin_uncertainty
from .terrain import TerrainLayers

logger = logging.getLogger(__name__)

# Marker area per uncertainty bin, smallest uncertainty first
BIN_SIZES = [12, 20, 32, 50, 80]


def _save(fig, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    logger.info(f"  Saved figure: {path}")
    return path


def plot_month_counts(counts: pd.Series, path: Path) -> Path:
    fig, ax = plt.subplots(figsize=(7, 4))
    ax.bar(counts.index, counts.to_numpy(), color="#55967a")
    ax.set_xticks(range(1, 13))
    ax.set_xlabel("Month")
    ax.set_ylabel("Records")
    ax.set_title("Occurrences by month")
    return _save(fig, path)


def plot_year_histogram(histogram: pd.DataFrame, path: Path) -> Path:
    fig, ax = plt.subplots(figsize=(7, 4))
    ax.bar(
        histogram["start"], histogram["n"],
        width=(histogram["end"] - histogram["start"]),
        align="edge",
        color="#55967a",
        edgecolor="white",
    )
    ax.set_xlabel("Year")
    ax.set_ylabel("Records")
    ax.set_title("Occurrences by year")
    return _save(fig, path)


def plot_elevation_completeness(table: pd.DataFrame, path: Path) -> Path:
    """Stacked bars of records with and without elevation per basis of record."""
    wide = table.pivot(index="basis_of_record", columns="has_elevation", values="n").fillna(0)
    fig, ax = plt.subplots(figsize=(7, 4))
    bottom = np.zeros(len(wide))
    for has_elevation, color in ((True, "#55967a"), (False, "#cccccc")):
        if has_elevation not in wide.columns:
            continue
        values = wide[has_elevation].to_numpy()
        ax.bar(wide.index.astype(str), values, bottom=bottom, color=color,
               label="with elevation" if has_elevation else "without elevation")
        bottom += values
    ax.set_ylabel("Records")
    ax.set_title("Elevation completeness by basis of record")
    ax.legend()
    return _save(fig, path)


def plot_uncertainty_histogram(frame: pd.DataFrame, path: Path) -> Path:
    values = frame["uncertainty_m"].dropna()
    values = values[values > 0]
    fig, ax = plt.subplots(figsize=(7, 4))
    if not values.empty:
        bins = np.logspace(np.log10(values.min()), np.log10(values.max()) + 1e-9, 30)
        ax.hist(values, bins=bins, color="#55967a", edgecolor="white")
        ax.set_xscale("log")
    ax.set_xlabel("Coordinate uncertainty (m)")
    ax.set_ylabel("Records")
    ax.set_title("Coordinate uncertainty")
    return _save(fig, path)


def plot_uncertainty_by_year(pairs: pd.DataFrame, path: Path) -> Path:
    fig, ax = plt.subplots(figsize=(7, 4))
    ax.scatter(pairs["year"], pairs["log10_uncertainty"], s=8, alpha=0.5, color="#55967a")
    ax.set_xlabel("Year")
    ax.set_ylabel("log10(coordinate uncertainty, m)")
    ax.set_title("Coordinate uncertainty over time")
    return _save(fig, path)


def marker_sizes(bins: pd.Series) -> np.ndarray:
    """Marker area for each binned uncertainty; unbinned values are not allowed."""
    codes = bins.cat.codes.to_numpy()
    if (codes < 0).any():
        raise ValueError("Uncertainty values outside the bin breaks have no marker size")
    return np.array(BIN_SIZES)[codes]


def draw_occurrence_map(
    points: gpd.GeoDataFrame,
    boundary: gpd.GeoDataFrame,
    viewport: tuple[float, float, float, float] = MAP_VIEWPORT,
):
    """
    Boundary and occurrences; size by uncertainty bin, colour by year on a
    diverging scale centred on the mean year.

    Points whose uncertainty falls outside the bin breaks are left off.

    Returns:
        (fig, ax, scatter) for further styling or saving
    """
    bins = bin_uncertainty(points["uncertainty_m"], UNCERTAINTY_BREAKS)
    binned = bins.notna().to_numpy()
    if not binned.all():
        logger.warning(f"  Left {int((~binned).sum())} points outside the uncertainty bins off the map")
        points = points[binned]
        bins = bins[binned]

    fig, ax = plt.subplots(figsize=(7, 8))
    boundary.plot(ax=ax, facecolor="#f2f2f2", edgecolor="#555555", linewidth=0.8)

    vmin, vmax = YEAR_DOMAIN
    center = float(points["year"].astype(float).mean()) if len(points) else (vmin + vmax) / 2
    center = min(max(center, vmin + 1), vmax - 1)
    norm = TwoSlopeNorm(vcenter=center, vmin=vmin, vmax=vmax)

    scatter = ax.scatter(
        points.geometry.x, points.geometry.y,
        s=marker_sizes(bins),
        c=points["year"].astype(float),
        cmap="RdBu",
        norm=norm,
        edgecolor="black",
        linewidth=0.3,
        alpha=0.85,
    )
    colorbar = fig.colorbar(scatter, ax=ax, shrink=0.6, label="Year")
    colorbar.set_ticks(YEAR_BREAKS)

    handles = [
        ax.scatter([], [], s=size, color="#999999", edgecolor="black", linewidth=0.3, label=label)
        for size, label in zip(BIN_SIZES, bins.cat.categories)
    ]
    ax.legend(handles=handles, title="Uncertainty (m)", loc="lower left", fontsize=7)

    min_lon, min_lat, max_lon, max_lat = viewport
    ax.set_xlim(min_lon, max_lon)
    ax.set_ylim(min_lat, max_lat)
    ax.set_xlabel("Longitude")
    ax.set_ylabel("Latitude")
    ax.set_title("Occurrences")
    return fig, ax, scatter


def plot_occurrence_map(
    points: gpd.GeoDataFrame,
    boundary: gpd.GeoDataFrame,
    path: Path,
    viewport: tuple[float, float, float, float] = MAP_VIEWPORT,
) -> Path:
    fig, _, _ = draw_occurrence_map(points, boundary, viewport)
    return _save(fig, path)


def _extent(terrain: TerrainLayers) -> list[float]:
    west, south, east, north = terrain.elevation.bounds
    return [west, east, south, north]


def plot_terrain_panel(terrain: TerrainLayers, path: Path) -> Path:
    """Slope, aspect and hillshade side by side."""
    fig, axes = plt.subplots(1, 3, figsize=(15, 5))
    extent = _extent(terrain)
    panels = (
        (terrain.slope, "Slope (degrees)", "viridis"),
        (terrain.aspect, "Aspect (degrees)", "twilight"),
        (terrain.hillshade, "Hillshade", "gray"),
    )
    for ax, (layer, title, cmap) in zip(axes, panels):
        image = ax.imshow(layer, extent=extent, cmap=cmap)
        ax.set_title(title)
        fig.colorbar(image, ax=ax, shrink=0.7)
    return _save(fig, path)


def plot_elevation_overlay(terrain: TerrainLayers, path: Path, alpha: float = 0.5) -> Path:
    """Hillshade with elevation colours laid over it."""
    fig, ax = plt.subplots(figsize=(7, 8))
    extent = _extent(terrain)
    ax.imshow(terrain.hillshade, extent=extent, cmap="gray")
    image = ax.imshow(terrain.elevation.data, extent=extent, cmap="terrain", alpha=alpha)
    fig.colorbar(image, ax=ax, shrink=0.6, label="Elevation (m)")
    ax.set_title("Elevation")
    return _save(fig, path)
