"""
Reference gazetteers used by the coordinate tests.

Capitals, country and province centroids and land polygons come from
Natural Earth; biodiversity institutions come from the GBIF GRSciColl
registry.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import geopandas as gpd
import pandas as pd
import requests
from tqdm import tqdm

from .config import GBIF_API, NATURAL_EARTH_URL
from .gbif import GBIFRequestError

logger = logging.getLogger(__name__)

# Equal-area CRS for computing polygon centroids
EQUAL_AREA_CRS = "EPSG:6933"


@dataclass
class ReferenceData:
    """
    Reference locations for the coordinate tests.

    Point tables have `longitude` and `latitude` columns in degrees.
    """

    capitals: Optional[pd.DataFrame] = None
    centroids: Optional[pd.DataFrame] = None
    institutions: Optional[pd.DataFrame] = None
    land: Optional[gpd.GeoDataFrame] = None


def _natural_earth(scale: str, category: str, name: str) -> gpd.GeoDataFrame:
    url = f"{NATURAL_EARTH_URL}/{scale}/{category}/ne_{scale}_{name}.zip"
    logger.info(f"  Loading {url}")
    return gpd.read_file(url)


def _points(gdf: gpd.GeoDataFrame) -> pd.DataFrame:
    return pd.DataFrame({
        "longitude": gdf.geometry.x.to_numpy(),
        "latitude": gdf.geometry.y.to_numpy(),
    })


def polygon_centroids(polygons: gpd.GeoDataFrame) -> pd.DataFrame:
    """Centroids of polygons computed in an equal-area projection."""
    centroids = polygons.to_crs(EQUAL_AREA_CRS).geometry.centroid.to_crs("EPSG:4326")
    return _points(gpd.GeoDataFrame(geometry=centroids))


def load_capitals() -> pd.DataFrame:
    places = _natural_earth("10m", "cultural", "populated_places_simple")
    capitals = places[places["adm0cap"] == 1]
    return _points(capitals.to_crs("EPSG:4326"))


def load_centroids() -> pd.DataFrame:
    countries = _natural_earth("50m", "cultural", "admin_0_countries")
    provinces = _natural_earth("50m", "cultural", "admin_1_states_provinces")
    return pd.concat(
        [polygon_centroids(countries), polygon_centroids(provinces)],
        ignore_index=True,
    )


def load_land() -> gpd.GeoDataFrame:
    return _natural_earth("50m", "physical", "land").to_crs("EPSG:4326")[["geometry"]]


def load_institutions(limit: int = 1000) -> pd.DataFrame:
    """Fetch institution coordinates from GRSciColl with pagination."""
    url = f"{GBIF_API}/grscicoll/institution"
    rows = []
    offset = 0
    progress = tqdm(desc="Fetching institutions", unit="inst")

    while True:
        params = {"limit": limit, "offset": offset}
        try:
            response = requests.get(url, params=params)
            response.raise_for_status()
        except requests.RequestException as exc:
            progress.close()
            raise GBIFRequestError("grscicoll/institution", params, exc) from exc
        data = response.json()

        results = data.get("results", [])
        for inst in results:
            lat = inst.get("latitude")
            lon = inst.get("longitude")
            if lat is not None and lon is not None:
                rows.append((lon, lat))
        progress.update(len(results))

        if not results or data.get("endOfRecords", True):
            break
        offset += limit

    progress.close()
    return pd.DataFrame(rows, columns=["longitude", "latitude"])


def load_reference_data() -> ReferenceData:
    """Download all reference gazetteers."""
    logger.info("Loading coordinate reference data...")
    return ReferenceData(
        capitals=load_capitals(),
        centroids=load_centroids(),
        institutions=load_institutions(),
        land=load_land(),
    )
