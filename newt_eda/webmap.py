"""
Interactive web map with the elevation raster and occurrence points.
"""

import logging
from pathlib import Path

import folium
import geopandas as gpd
import matplotlib
import numpy as np
from matplotlib.colors import Normalize

from .terrain import ElevationRaster

logger = logging.getLogger(__name__)


def elevation_rgba(raster: ElevationRaster, cmap: str = "terrain") -> np.ndarray:
    """Colour an elevation grid; no-data cells are transparent."""
    data = raster.data
    valid = ~np.isnan(data)
    if valid.any():
        norm = Normalize(vmin=float(np.nanmin(data)), vmax=float(np.nanmax(data)))
    else:
        norm = Normalize(vmin=0, vmax=1)
    rgba = matplotlib.colormaps[cmap](norm(np.where(valid, data, 0.0)))
    rgba[..., 3] = np.where(valid, 1.0, 0.0)
    return (rgba * 255).astype(np.uint8)


def build_web_map(
    raster: ElevationRaster,
    points: gpd.GeoDataFrame,
    opacity: float = 0.6,
) -> folium.Map:
    """Elevation overlay and point markers on a pannable basemap."""
    west, south, east, north = raster.bounds
    if len(points):
        center = (float(points.geometry.y.mean()), float(points.geometry.x.mean()))
    else:
        center = ((south + north) / 2, (west + east) / 2)

    web_map = folium.Map(location=center, zoom_start=6, tiles="OpenStreetMap")

    folium.raster_layers.ImageOverlay(
        image=elevation_rgba(raster),
        bounds=[[south, west], [north, east]],
        opacity=opacity,
        mercator_project=True,
        name="Elevation",
    ).add_to(web_map)

    markers = folium.FeatureGroup(name="Occurrences")
    for _, row in points.iterrows():
        folium.CircleMarker(
            location=(row.geometry.y, row.geometry.x),
            radius=3,
            color="#d7191c",
            fill=True,
            fill_opacity=0.8,
            weight=1,
            popup=f"{row['name']} ({int(row['year'])})",
        ).add_to(markers)
    markers.add_to(web_map)

    folium.LayerControl().add_to(web_map)
    return web_map


def save_web_map(raster: ElevationRaster, points: gpd.GeoDataFrame, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    build_web_map(raster, points).save(str(path))
    logger.info(f"  Saved web map: {path}")
    return path
