"""
Shaded 3D terrain rendering with occurrence points draped on the surface.

Heights are expressed in grid-cell units by dividing elevation (metres) by
`zscale`; a smaller zscale exaggerates relief.
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.colors import to_rgb
from rasterio.transform import Affine

from .config import (
    POINT_COLOR,
    POINT_OFFSET,
    POINT_SIZE,
    RENDER_ZSCALE,
    SHADOW_ZSCALE,
    TEXTURE_COLORS,
)
from .terrain import ElevationRaster

logger = logging.getLogger(__name__)

SUN_ALTITUDE = 45
SUN_AZIMUTH = 315


@dataclass
class Texture:
    """Colours for surfaces facing toward, away from, left of, right of the sun and flat."""

    light: np.ndarray
    shadow: np.ndarray
    left: np.ndarray
    right: np.ndarray
    center: np.ndarray


@dataclass
class CameraView:
    name: str
    elev: float
    azim: float
    zoom: float = 1.0


OVERHEAD = CameraView("overhead", elev=89.0, azim=-90.0)
OBLIQUE = CameraView("oblique", elev=22.0, azim=-115.0, zoom=1.2)


def create_texture(
    light: str = TEXTURE_COLORS[0],
    shadow: str = TEXTURE_COLORS[1],
    left: str = TEXTURE_COLORS[2],
    right: str = TEXTURE_COLORS[3],
    center: str = TEXTURE_COLORS[4],
) -> Texture:
    return Texture(*(np.array(to_rgb(color)) for color in (light, shadow, left, right, center)))


def downsample(raster: ElevationRaster, max_size: int) -> tuple[ElevationRaster, int]:
    """Keep every n-th cell so neither dimension exceeds `max_size`."""
    stride = max(1, math.ceil(max(raster.shape) / max_size))
    if stride == 1:
        return raster, 1
    return (
        ElevationRaster(
            data=raster.data[::stride, ::stride].copy(),
            transform=raster.transform * Affine.scale(stride),
            crs=raster.crs,
        ),
        stride,
    )


def height_matrix(raster: ElevationRaster, zscale: float, stride: int = 1) -> np.ndarray:
    """Elevation in cell units; NaN outside the data."""
    return raster.data.astype(np.float64) / (zscale * stride)


def _surface_normals(heights: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Unit normals as (east, north, up) components."""
    filled = np.where(np.isnan(heights), np.nanmean(heights), heights)
    d_row, d_col = np.gradient(filled)
    east, north = -d_col, d_row
    norm = np.sqrt(east ** 2 + north ** 2 + 1.0)
    return east / norm, north / norm, 1.0 / norm


def sphere_shade(heights: np.ndarray, texture: Texture, sunangle: float = SUN_AZIMUTH) -> np.ndarray:
    """
    Colour each cell from the texture by the direction its surface faces.

    Returns an (H, W, 3) RGB array in [0, 1].
    """
    east, north, _ = _surface_normals(heights)
    azimuth = np.radians(sunangle)
    toward_sun = east * np.sin(azimuth) + north * np.cos(azimuth)
    across_sun = east * np.cos(azimuth) - north * np.sin(azimuth)

    weights = np.stack([
        np.clip(toward_sun, 0, None),
        np.clip(-toward_sun, 0, None),
        np.clip(-across_sun, 0, None),
        np.clip(across_sun, 0, None),
    ])
    center = np.clip(1.0 - weights.sum(axis=0), 0, None)
    weights = np.concatenate([weights, center[np.newaxis]])
    weights /= weights.sum(axis=0)

    colors = np.stack([texture.light, texture.shadow, texture.left, texture.right, texture.center])
    return np.einsum("khw,kc->hwc", weights, colors)


def horizon_tangent(heights: np.ndarray, azimuth: float, maxsearch: int) -> np.ndarray:
    """
    Steepest rise (height over distance, in cell units) looking toward
    `azimuth` degrees clockwise from north, over `maxsearch` cells.
    """
    n_rows, n_cols = heights.shape
    rows, cols = np.indices(heights.shape)
    col_step = np.sin(np.radians(azimuth))
    row_step = -np.cos(np.radians(azimuth))
    blockers = np.where(np.isnan(heights), -np.inf, heights)

    horizon = np.full(heights.shape, -np.inf)
    for k in range(1, maxsearch + 1):
        r = np.rint(rows + k * row_step).astype(int)
        c = np.rint(cols + k * col_step).astype(int)
        inside = (r >= 0) & (r < n_rows) & (c >= 0) & (c < n_cols)
        if not inside.any():
            break
        sample = np.full(heights.shape, -np.inf)
        sample[inside] = blockers[r[inside], c[inside]]
        with np.errstate(invalid="ignore"):
            horizon = np.fmax(horizon, (sample - heights) / k)
    horizon[np.isnan(heights)] = np.nan
    return horizon


def ray_shade(
    heights: np.ndarray,
    sunaltitude: float = SUN_ALTITUDE,
    sunangle: float = SUN_AZIMUTH,
    anglebreaks: Optional[list[float]] = None,
    maxsearch: int = 100,
) -> np.ndarray:
    """
    Directional cast shadows: fraction of sun altitudes in `anglebreaks`
    (default just `sunaltitude`) that each cell can see.
    """
    altitudes = np.asarray(anglebreaks if anglebreaks is not None else [sunaltitude], dtype=float)
    horizon = horizon_tangent(heights, sunangle, maxsearch)
    lit = np.zeros(heights.shape)
    for altitude in altitudes:
        lit += horizon <= np.tan(np.radians(altitude))
    shade = lit / len(altitudes)
    shade[np.isnan(heights)] = np.nan
    return shade


def ambient_shade(heights: np.ndarray, n_directions: int = 12, maxsearch: int = 50) -> np.ndarray:
    """Ambient occlusion: mean open-sky fraction over `n_directions` azimuths."""
    visible = np.zeros(heights.shape)
    for azimuth in np.linspace(0, 360, n_directions, endpoint=False):
        horizon = horizon_tangent(heights, azimuth, maxsearch)
        elevation_angle = np.arctan(np.clip(np.nan_to_num(horizon, nan=0.0), 0, None))
        visible += 1.0 - np.sin(elevation_angle)
    shade = visible / n_directions
    shade[np.isnan(heights)] = np.nan
    return shade


def add_shadow(rgb: np.ndarray, shadow: np.ndarray, max_darken: float = 0.5) -> np.ndarray:
    """Darken `rgb` where `shadow` < 1, never below `max_darken` of the input."""
    factor = max_darken + (1.0 - max_darken) * np.nan_to_num(shadow, nan=1.0)
    return rgb * factor[..., np.newaxis]


def shade_surface(heights: np.ndarray, texture: Optional[Texture] = None) -> np.ndarray:
    """Texture plus ray-traced and ambient shadow layers."""
    texture = texture or create_texture()
    rgb = sphere_shade(heights, texture)
    rgb = add_shadow(rgb, ray_shade(heights), max_darken=0.5)
    rgb = add_shadow(rgb, ambient_shade(heights), max_darken=0.5)
    return np.clip(rgb, 0, 1)


def box_aspect(heights: np.ndarray) -> tuple[float, float, float]:
    """Axis lengths (x, y, z) that keep grid cells square and heights in cell units."""
    n_rows, n_cols = heights.shape
    relief = float(np.nanmax(heights) - np.nanmin(heights)) or 1.0
    return (n_cols, n_rows, relief)


def plot_3d(rgb: np.ndarray, heights: np.ndarray, figsize=(10, 8)):
    """Extrude a shaded height grid into a 3D surface; north is up."""
    n_rows, n_cols = heights.shape
    cols, rows = np.meshgrid(np.arange(n_cols), np.arange(n_rows))
    missing = np.isnan(heights)
    base = np.nanmin(heights)
    z = np.where(missing, base, heights)

    rgba = np.concatenate([rgb, np.where(missing, 0.0, 1.0)[..., np.newaxis]], axis=-1)

    fig = plt.figure(figsize=figsize)
    ax = fig.add_subplot(projection="3d")
    ax.plot_surface(
        cols, n_rows - 1 - rows, z,
        facecolors=rgba,
        rstride=1,
        cstride=1,
        linewidth=0,
        antialiased=False,
        shade=False,
    )
    ax.set_box_aspect(box_aspect(heights))
    ax.set_axis_off()
    return fig, ax


def render_points(
    ax,
    raster: ElevationRaster,
    heights: np.ndarray,
    lons: np.ndarray,
    lats: np.ndarray,
    offset_cells: float,
    size: float = POINT_SIZE,
    color: str = POINT_COLOR,
) -> int:
    """
    Drape points on the surface, raised by `offset_cells`.

    Points off the grid or over no-data are skipped; returns the number drawn.
    """
    n_rows, n_cols = heights.shape
    cols, rows = ~raster.transform * (np.asarray(lons, dtype=float), np.asarray(lats, dtype=float))
    cols = np.floor(cols).astype(int)
    rows = np.floor(rows).astype(int)
    inside = (rows >= 0) & (rows < n_rows) & (cols >= 0) & (cols < n_cols)
    rows, cols = rows[inside], cols[inside]
    z = heights[rows, cols]
    keep = ~np.isnan(z)

    ax.scatter(
        cols[keep], n_rows - 1 - rows[keep], z[keep] + offset_cells,
        s=size,
        c=color,
        depthshade=False,
    )
    return int(keep.sum())


def render_snapshot(
    fig, ax, view: CameraView, path: Path, aspect: tuple[float, float, float], dpi: int = 150
) -> Path:
    ax.view_init(elev=view.elev, azim=view.azim)
    ax.set_box_aspect(aspect, zoom=view.zoom)
    fig.savefig(path, dpi=dpi, bbox_inches="tight")
    return Path(path)


def render_scene(
    elevation: ElevationRaster,
    lons: np.ndarray,
    lats: np.ndarray,
    output_dir: Path,
    views: tuple[CameraView, ...] = (OVERHEAD, OBLIQUE),
    max_size: int = 300,
    shadow_zscale: float = SHADOW_ZSCALE,
    render_zscale: float = RENDER_ZSCALE,
    point_offset: float = POINT_OFFSET,
) -> dict[str, Path]:
    """
    Render the terrain with occurrence points from each camera view.

    Returns:
        Mapping of view name to snapshot image path
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    grid, stride = downsample(elevation, max_size)
    logger.info(f"  Render grid: {grid.shape} (stride {stride})")

    shadow_heights = height_matrix(grid, shadow_zscale, stride)
    rgb = shade_surface(shadow_heights)

    heights = height_matrix(grid, render_zscale, stride)
    fig, ax = plot_3d(rgb, heights)
    n_drawn = render_points(
        ax, grid, heights, lons, lats,
        offset_cells=point_offset / (render_zscale * stride),
    )
    logger.info(f"  Draped {n_drawn} of {len(lons)} points on the surface")

    paths = {}
    for view in views:
        paths[view.name] = render_snapshot(
            fig, ax, view, output_dir / f"terrain_3d_{view.name}.png", box_aspect(heights)
        )
        logger.info(f"  Saved {view.name} snapshot: {paths[view.name]}")
    plt.close(fig)
    return paths
