"""
Vector layers: occurrence points, region boundary and uncertainty bins.
"""

import logging

import geopandas as gpd
import pandas as pd

from .config import STATES_URL, UNCERTAINTY_BREAKS

logger = logging.getLogger(__name__)

WGS84 = "EPSG:4326"

POINT_ATTRIBUTES = ["name", "year", "uncertainty_m", "basis_of_record"]


def to_point_layer(frame: pd.DataFrame) -> gpd.GeoDataFrame:
    """
    Build one WGS84 point per cleaned record.

    The frame index and the styling attributes are carried over unchanged.
    """
    attributes = [col for col in POINT_ATTRIBUTES if col in frame.columns]
    return gpd.GeoDataFrame(
        frame[attributes].copy(),
        geometry=gpd.points_from_xy(frame["longitude"], frame["latitude"]),
        crs=WGS84,
    )


def load_boundary(name: str, source: str = STATES_URL, name_column: str = "NAME") -> gpd.GeoDataFrame:
    """
    Load one administrative boundary as a single-row GeoDataFrame in WGS84.

    Args:
        name: Region name, e.g. "California"
        source: Any path or URL geopandas can read
        name_column: Attribute holding region names

    Raises:
        ValueError: if no feature has that name
    """
    logger.info(f"  Loading boundary for {name} from {source}")
    regions = gpd.read_file(source)
    region = regions[regions[name_column] == name]
    if region.empty:
        raise ValueError(f"Region not found in boundary source: {name}")

    region = region.to_crs(WGS84)
    return gpd.GeoDataFrame({"name": [name]}, geometry=[region.geometry.union_all()], crs=WGS84)


def uncertainty_labels(breaks: list[float] = UNCERTAINTY_BREAKS) -> list[str]:
    return [f"[{lo:g}, {hi:g})" for lo, hi in zip(breaks[:-1], breaks[1:])]


def bin_uncertainty(values: pd.Series, breaks: list[float] = UNCERTAINTY_BREAKS) -> pd.Series:
    """
    Assign coordinate uncertainties to half-open bins [a, b).

    Examples:
        50 -> "[10, 100)", 5000 -> "[1000, 10000)"
    """
    return pd.cut(
        pd.Series(values, dtype=float),
        bins=breaks,
        right=False,
        labels=uncertainty_labels(breaks),
    )
