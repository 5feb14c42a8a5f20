"""
Elevation raster acquisition and terrain derivatives.

Elevation comes from the AWS Terrain Tiles service (Terrarium encoding).
Tiles are downloaded once for a region, merged into a Web Mercator mosaic
and reprojected to WGS84, rather than queried per point.
"""

import logging
import math
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import numpy as np
import rasterio
import requests
from rasterio.crs import CRS
from rasterio.errors import NotGeoreferencedWarning
from rasterio.features import geometry_mask
from rasterio.io import MemoryFile
from rasterio.merge import merge
from rasterio.transform import Affine, array_bounds, from_origin
from rasterio.warp import Resampling, calculate_default_transform, reproject
from rasterio.windows import Window
from rasterio.windows import transform as window_transform
from tqdm import tqdm

from .config import SUN_ANGLE, SUN_DIRECTION, TERRARIUM_URL

logger = logging.getLogger(__name__)

TILE_SIZE = 256
ORIGIN_SHIFT = 20037508.342789244
WEB_MERCATOR = CRS.from_epsg(3857)
WGS84 = CRS.from_epsg(4326)

METRES_PER_DEGREE = 111_320.0

# Tolerance when snapping crop bounds to the cell grid (in cells)
_SNAP = 1e-9


class TileRequestError(RuntimeError):
    """An elevation tile could not be downloaded."""

    def __init__(self, url: str, cause: Exception):
        self.url = url
        super().__init__(f"Elevation tile request to {url} failed: {cause}")


def lonlat_to_tile(lon: float, lat: float, zoom: int) -> tuple[int, int]:
    """Slippy-map tile indices containing a WGS84 location."""
    n = 2 ** zoom
    lat = max(min(lat, 85.0511), -85.0511)
    x = int((lon + 180.0) / 360.0 * n)
    y = int((1.0 - math.asinh(math.tan(math.radians(lat))) / math.pi) / 2.0 * n)
    return min(max(x, 0), n - 1), min(max(y, 0), n - 1)


def tiles_for_bounds(bounds: tuple[float, float, float, float], zoom: int) -> list[tuple[int, int]]:
    """All tiles intersecting (min_lon, min_lat, max_lon, max_lat)."""
    min_lon, min_lat, max_lon, max_lat = bounds
    x0, y0 = lonlat_to_tile(min_lon, max_lat, zoom)
    x1, y1 = lonlat_to_tile(max_lon, min_lat, zoom)
    return [(x, y) for y in range(y0, y1 + 1) for x in range(x0, x1 + 1)]


def tile_transform(x: int, y: int, zoom: int) -> Affine:
    """Web Mercator affine transform of one tile."""
    size = 2 * ORIGIN_SHIFT / 2 ** zoom
    return from_origin(-ORIGIN_SHIFT + x * size, ORIGIN_SHIFT - y * size, size / TILE_SIZE, size / TILE_SIZE)


def decode_terrarium(rgb: np.ndarray) -> np.ndarray:
    """Decode Terrarium RGB bands (3, H, W) into metres."""
    rgb = rgb.astype(np.float64)
    return (rgb[0] * 256 + rgb[1] + rgb[2] / 256 - 32768).astype(np.float32)


def fetch_tile(x: int, y: int, zoom: int, url: str = TERRARIUM_URL) -> np.ndarray:
    """Download and decode one elevation tile."""
    tile_url = url.format(z=zoom, x=x, y=y)
    try:
        response = requests.get(tile_url)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise TileRequestError(tile_url, exc) from exc

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", NotGeoreferencedWarning)
        with MemoryFile(response.content) as memfile, memfile.open() as src:
            rgb = src.read([1, 2, 3])
    return decode_terrarium(rgb)


@dataclass
class ElevationRaster:
    """Single-band elevation grid; NaN marks no-data cells."""

    data: np.ndarray
    transform: Affine
    crs: CRS = field(default_factory=lambda: WGS84)

    @property
    def shape(self) -> tuple[int, int]:
        return self.data.shape

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """(min_x, min_y, max_x, max_y)"""
        west, south, east, north = array_bounds(*self.shape, self.transform)
        return (west, south, east, north)

    def cell_centers(self) -> tuple[np.ndarray, np.ndarray]:
        """1-D arrays of cell centre x (per column) and y (per row)."""
        height, width = self.shape
        xs = self.transform.c + (np.arange(width) + 0.5) * self.transform.a
        ys = self.transform.f + (np.arange(height) + 0.5) * self.transform.e
        return xs, ys

    def stats(self) -> dict:
        values = self.data[~np.isnan(self.data)]
        if values.size == 0:
            return {"min": None, "max": None, "mean": None, "cells": 0}
        return {
            "min": float(values.min()),
            "max": float(values.max()),
            "mean": float(values.mean()),
            "cells": int(values.size),
        }

    def crop(self, bbox: tuple[float, float, float, float]) -> "ElevationRaster":
        """
        Crop to the whole cells lying inside (min_x, min_y, max_x, max_y).

        Raises:
            ValueError: if the box does not cover any cell
        """
        min_x, min_y, max_x, max_y = bbox
        height, width = self.shape
        inverse = ~self.transform

        col_start, row_start = inverse * (min_x, max_y)
        col_stop, row_stop = inverse * (max_x, min_y)
        col_start = max(0, math.ceil(col_start - _SNAP))
        row_start = max(0, math.ceil(row_start - _SNAP))
        col_stop = min(width, math.floor(col_stop + _SNAP))
        row_stop = min(height, math.floor(row_stop + _SNAP))

        if col_stop <= col_start or row_stop <= row_start:
            raise ValueError(f"Crop box {bbox} does not overlap raster extent {self.bounds}")

        window = Window(col_start, row_start, col_stop - col_start, row_stop - row_start)
        return ElevationRaster(
            data=self.data[row_start:row_stop, col_start:col_stop].copy(),
            transform=window_transform(window, self.transform),
            crs=self.crs,
        )

    def mask(self, geometry) -> "ElevationRaster":
        """
        Set cells whose centre lies outside `geometry` to NaN.

        Raises:
            ValueError: if no cell with data remains
        """
        outside = geometry_mask([geometry], out_shape=self.shape, transform=self.transform)
        data = np.where(outside, np.nan, self.data).astype(np.float32)
        if np.isnan(data).all():
            raise ValueError(f"Mask geometry leaves no data inside raster extent {self.bounds}")
        return ElevationRaster(data=data, transform=self.transform, crs=self.crs)

    def save(self, path: Path) -> None:
        """Save as a compressed GeoTIFF."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        height, width = self.shape
        with rasterio.open(
            path, "w",
            driver="GTiff",
            height=height,
            width=width,
            count=1,
            dtype="float32",
            crs=self.crs,
            transform=self.transform,
            nodata=np.nan,
            compress="lzw",
        ) as dst:
            dst.write(self.data.astype(np.float32), 1)
        logger.info(f"  Cached elevation raster to {path}")

    @classmethod
    def load(cls, path: Path) -> "ElevationRaster":
        """Load from a GeoTIFF written by `save`."""
        with rasterio.open(path) as src:
            data = src.read(1, masked=True).astype(np.float32).filled(np.nan)
            return cls(data=data, transform=src.transform, crs=src.crs)


def reproject_raster(
    data: np.ndarray,
    transform: Affine,
    src_crs: CRS,
    dst_crs: CRS = WGS84,
) -> ElevationRaster:
    """Reproject a single-band array with bilinear resampling."""
    height, width = data.shape
    left, bottom, right, top = array_bounds(height, width, transform)
    dst_transform, dst_width, dst_height = calculate_default_transform(
        src_crs, dst_crs, width, height, left, bottom, right, top
    )
    destination = np.full((dst_height, dst_width), np.nan, dtype=np.float32)
    reproject(
        source=data.astype(np.float32),
        destination=destination,
        src_transform=transform,
        src_crs=src_crs,
        src_nodata=np.nan,
        dst_transform=dst_transform,
        dst_crs=dst_crs,
        dst_nodata=np.nan,
        resampling=Resampling.bilinear,
    )
    return ElevationRaster(data=destination, transform=dst_transform, crs=dst_crs)


def fetch_elevation(
    bounds: tuple[float, float, float, float],
    zoom: int,
    cache_path: Optional[Path] = None,
    url: str = TERRARIUM_URL,
) -> ElevationRaster:
    """
    Download elevation tiles covering `bounds` and build a WGS84 raster.

    Args:
        bounds: (min_lon, min_lat, max_lon, max_lat)
        zoom: Tile zoom level
        cache_path: Optional GeoTIFF path to load from / save to
        url: Tile URL template with {z}, {x} and {y}

    Returns:
        ElevationRaster in EPSG:4326
    """
    if cache_path and Path(cache_path).exists():
        logger.info(f"  Loading cached elevation from {cache_path}")
        return ElevationRaster.load(cache_path)

    tiles = tiles_for_bounds(bounds, zoom)
    logger.info(f"  Fetching {len(tiles)} elevation tiles at zoom {zoom}...")

    memfiles = []
    datasets = []
    try:
        for x, y in tqdm(tiles, desc="Downloading tiles"):
            elevation = fetch_tile(x, y, zoom, url=url)
            memfile = MemoryFile()
            memfiles.append(memfile)
            dataset = memfile.open(
                driver="GTiff",
                height=elevation.shape[0],
                width=elevation.shape[1],
                count=1,
                dtype="float32",
                crs=WEB_MERCATOR,
                transform=tile_transform(x, y, zoom),
                nodata=np.nan,
            )
            dataset.write(elevation, 1)
            datasets.append(dataset)

        logger.info("  Merging tiles into mosaic...")
        mosaic, mosaic_transform = merge(datasets, nodata=np.nan)
    finally:
        for dataset in datasets:
            dataset.close()
        for memfile in memfiles:
            memfile.close()

    raster = reproject_raster(mosaic[0], mosaic_transform, WEB_MERCATOR)
    logger.info(f"  Elevation raster shape: {raster.shape}")

    if cache_path:
        raster.save(cache_path)

    return raster


def cell_size_m(raster: ElevationRaster) -> tuple[np.ndarray, float]:
    """
    Cell width per row and cell height, in metres.

    Geographic grids shrink in width towards the poles.
    """
    res_x = abs(raster.transform.a)
    res_y = abs(raster.transform.e)
    height = raster.shape[0]
    if raster.crs is not None and raster.crs.is_geographic:
        _, lats = raster.cell_centers()
        dx = res_x * METRES_PER_DEGREE * np.cos(np.radians(lats))
        return dx[:, np.newaxis], res_y * METRES_PER_DEGREE
    return np.full((height, 1), res_x), res_y


def slope_aspect(raster: ElevationRaster) -> tuple[np.ndarray, np.ndarray]:
    """
    Slope and aspect in degrees from Horn's 3x3 finite differences.

    Aspect is measured clockwise from north. Edge cells, cells next to
    no-data and flat cells (aspect only) are NaN.
    """
    z = np.pad(raster.data.astype(np.float64), 1, constant_values=np.nan)
    a, b, c = z[:-2, :-2], z[:-2, 1:-1], z[:-2, 2:]
    d, f = z[1:-1, :-2], z[1:-1, 2:]
    g, h, i = z[2:, :-2], z[2:, 1:-1], z[2:, 2:]

    dx, dy = cell_size_m(raster)
    dzdx = ((c + 2 * f + i) - (a + 2 * d + g)) / (8 * dx)
    dzdy = ((g + 2 * h + i) - (a + 2 * b + c)) / (8 * dy)

    slope = np.degrees(np.arctan(np.hypot(dzdx, dzdy)))

    with np.errstate(invalid="ignore"):
        angle = np.degrees(np.arctan2(dzdy, -dzdx))
        aspect = np.where(angle < 0, 90.0 - angle, np.where(angle > 90.0, 450.0 - angle, 90.0 - angle))
        aspect[(dzdx == 0) & (dzdy == 0)] = np.nan
    aspect[np.isnan(slope)] = np.nan

    return slope.astype(np.float32), aspect.astype(np.float32)


def hillshade(
    slope: np.ndarray,
    aspect: np.ndarray,
    angle: float = SUN_ANGLE,
    direction: float = SUN_DIRECTION,
) -> np.ndarray:
    """
    Grey-level illumination in [0, 1] for a sun at `angle` degrees above
    the horizon, coming from `direction` degrees clockwise from north.
    """
    slope_rad = np.radians(slope)
    aspect_rad = np.radians(np.where(np.isnan(aspect), 0.0, aspect))
    altitude = np.radians(angle)
    azimuth = np.radians(direction)

    shade = np.sin(altitude) * np.cos(slope_rad) + np.cos(altitude) * np.sin(slope_rad) * np.cos(azimuth - aspect_rad)
    return np.clip(shade, 0.0, 1.0).astype(np.float32)


@dataclass
class TerrainLayers:
    """Elevation with co-registered slope, aspect and hillshade grids."""

    elevation: ElevationRaster
    slope: np.ndarray
    aspect: np.ndarray
    hillshade: np.ndarray


def derive_terrain(
    elevation: ElevationRaster,
    angle: float = SUN_ANGLE,
    direction: float = SUN_DIRECTION,
) -> TerrainLayers:
    slope, aspect = slope_aspect(elevation)
    return TerrainLayers(
        elevation=elevation,
        slope=slope,
        aspect=aspect,
        hillshade=hillshade(slope, aspect, angle=angle, direction=direction),
    )
