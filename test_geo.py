"""Tests for the vector layers."""

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import box

from newt_eda.cleaning import clean_occurrences
from newt_eda.geo import bin_uncertainty, load_boundary, to_point_layer, uncertainty_labels


def test_uncertainty_bins_half_open():
    binned = bin_uncertainty(pd.Series([1, 10, 50, 500, 5000, 50000]))

    assert [str(label) for label in binned] == [
        "[0, 10)",
        "[10, 100)",
        "[10, 100)",
        "[100, 1000)",
        "[1000, 10000)",
        "[10000, 1e+07)",
    ]


def test_uncertainty_bins_ordered():
    labels = uncertainty_labels()
    binned = bin_uncertainty(pd.Series([5.0]))

    assert list(binned.cat.categories) == labels
    assert binned.cat.ordered


def test_point_layer_one_point_per_record(occurrence_frame, everywhere_land):
    cleaned = clean_occurrences(occurrence_frame, reference=everywhere_land).frame
    points = to_point_layer(cleaned)

    assert len(points) == len(cleaned)
    assert list(points.index) == list(cleaned.index)
    assert points.crs.to_epsg() == 4326
    assert list(points.geometry.x) == list(cleaned["longitude"])
    assert list(points.geometry.y) == list(cleaned["latitude"])
    assert "year" in points.columns


def test_load_boundary_dissolves_parts(tmp_path):
    path = tmp_path / "states.geojson"
    gpd.GeoDataFrame(
        {"NAME": ["California", "California", "Oregon"]},
        geometry=[box(-124, 32, -118, 38), box(-123, 38, -120, 42), box(-124, 42, -117, 46)],
        crs="EPSG:4326",
    ).to_file(path, driver="GeoJSON")

    boundary = load_boundary("California", source=str(path))

    assert len(boundary) == 1
    assert boundary.crs.to_epsg() == 4326
    assert boundary.total_bounds.tolist() == [-124, 32, -118, 42]


def test_load_boundary_unknown_region(tmp_path):
    path = tmp_path / "states.geojson"
    gpd.GeoDataFrame({"NAME": ["Oregon"]}, geometry=[box(-124, 42, -117, 46)], crs="EPSG:4326").to_file(
        path, driver="GeoJSON"
    )

    with pytest.raises(ValueError, match="Atlantis"):
        load_boundary("Atlantis", source=str(path))
