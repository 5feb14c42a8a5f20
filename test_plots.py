"""Tests for the occurrence map and the interactive web map."""

import folium
import geopandas as gpd
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest
from rasterio.transform import from_origin
from shapely.geometry import box

from newt_eda.config import MAP_VIEWPORT, YEAR_BREAKS, YEAR_DOMAIN
from newt_eda.geo import bin_uncertainty, to_point_layer
from newt_eda.plots import BIN_SIZES, draw_occurrence_map, marker_sizes, plot_occurrence_map
from newt_eda.terrain import ElevationRaster
from newt_eda.webmap import build_web_map, elevation_rgba


def make_points(uncertainties, years):
    n = len(uncertainties)
    frame = pd.DataFrame({
        "name": pd.Categorical(["Taricha torosa"] * n),
        "year": pd.array(years, dtype="Int64"),
        "longitude": np.linspace(-121.5, -120.5, n),
        "latitude": np.linspace(37.0, 38.0, n),
        "uncertainty_m": uncertainties,
        "basis_of_record": pd.Categorical(["HUMAN_OBSERVATION"] * n),
    })
    return to_point_layer(frame)


@pytest.fixture
def boundary():
    return gpd.GeoDataFrame({"name": ["California"]}, geometry=[box(-124.0, 33.0, -114.5, 42.0)], crs="EPSG:4326")


def test_occurrence_map_styling(boundary):
    points = make_points([5.0, 50.0, 500.0, 5000.0, 50000.0], [1950, 1980, 2000, 2010, 2020])

    fig, ax, scatter = draw_occurrence_map(points, boundary)

    assert ax.get_xlim() == (MAP_VIEWPORT[0], MAP_VIEWPORT[2])
    assert ax.get_ylim() == (MAP_VIEWPORT[1], MAP_VIEWPORT[3])
    assert scatter.norm.vcenter == pytest.approx(1992.0)
    assert (scatter.norm.vmin, scatter.norm.vmax) == YEAR_DOMAIN
    assert scatter.get_cmap().name == "RdBu"
    assert list(scatter.colorbar.get_ticks()) == YEAR_BREAKS
    assert list(scatter.get_sizes()) == BIN_SIZES
    plt.close(fig)


def test_occurrence_map_leaves_off_unbinned_points(boundary):
    points = make_points([50.0, 2e7, -1.0, 500.0], [2000, 2001, 2002, 2003])

    fig, _, scatter = draw_occurrence_map(points, boundary)

    assert len(scatter.get_offsets()) == 2
    assert list(scatter.get_sizes()) == [20, 32]
    plt.close(fig)


def test_marker_sizes_reject_unbinned_values():
    with pytest.raises(ValueError, match="outside the bin breaks"):
        marker_sizes(bin_uncertainty(pd.Series([50.0, 2e7])))


def test_plot_occurrence_map_writes_png(boundary, tmp_path):
    points = make_points([10.0, 100.0], [1990, 2010])
    path = plot_occurrence_map(points, boundary, tmp_path / "map.png")
    assert path.exists()


@pytest.fixture
def elevation():
    data = np.arange(20 * 30, dtype=np.float32).reshape(20, 30)
    data[0, 0] = np.nan
    return ElevationRaster(data=data, transform=from_origin(-122.0, 38.5, 0.1, 0.1))


def test_elevation_rgba_transparent_no_data(elevation):
    rgba = elevation_rgba(elevation)

    assert rgba.shape == (20, 30, 4)
    assert rgba[0, 0, 3] == 0
    assert rgba[5, 5, 3] == 255


def test_web_map_layers(elevation):
    points = make_points([10.0, 100.0, 1000.0], [1990, 2000, 2010])

    web_map = build_web_map(elevation, points)
    children = list(web_map._children.values())

    overlays = [child for child in children if isinstance(child, folium.raster_layers.ImageOverlay)]
    assert len(overlays) == 1
    west, south, east, north = elevation.bounds
    assert overlays[0].bounds == [[south, west], [north, east]]

    groups = [child for child in children if isinstance(child, folium.FeatureGroup)]
    assert len(groups) == 1
    markers = [child for child in groups[0]._children.values() if isinstance(child, folium.CircleMarker)]
    assert len(markers) == 3

    assert any(isinstance(child, folium.LayerControl) for child in children)
    assert web_map.location == pytest.approx([37.5, -121.0])
