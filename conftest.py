"""Shared fixtures: synthetic GBIF records, frames, rasters and reference data."""

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from rasterio.transform import from_origin
from shapely.geometry import box

from newt_eda.reference import ReferenceData
from newt_eda.schema import records_to_table
from newt_eda.terrain import ElevationRaster


def gbif_record(key, **overrides):
    """A GBIF occurrence search result with the fields the analysis reads."""
    record = {
        "key": key,
        "scientificName": "Taricha torosa (Rathke, 1833)",
        "species": "Taricha torosa",
        "year": 2015,
        "month": 4,
        "decimalLatitude": 37.5 + key * 0.01,
        "decimalLongitude": -121.5 - key * 0.01,
        "coordinateUncertaintyInMeters": 100.0,
        "basisOfRecord": "HUMAN_OBSERVATION",
        "countryCode": "US",
        "datasetKey": "50c9509d-22c7-4a22-a47d-8c48425ef4a7",
    }
    record.update(overrides)
    return record


@pytest.fixture
def raw_records():
    return [
        gbif_record(1),
        gbif_record(2, year=1962, month=2, basisOfRecord="PRESERVED_SPECIMEN",
                    institutionCode="MVZ", elevation=350.0, verbatimElevation="1150 ft"),
        gbif_record(3, year=1975, month=3, basisOfRecord="PRESERVED_SPECIMEN",
                    institutionCode="CAS", coordinateUncertaintyInMeters=5000.0),
        gbif_record(4, year=None, month=None),
        gbif_record(5, scientificName="Taricha torosa torosa", month=12,
                    coordinateUncertaintyInMeters=None, elevation=120.0),
        gbif_record(6, year=2021, basisOfRecord="PRESERVED_SPECIMEN", institutionCode="MVZ"),
    ]


@pytest.fixture
def occurrence_table(raw_records):
    return records_to_table(raw_records)


@pytest.fixture
def occurrence_frame(occurrence_table):
    return occurrence_table.frame


@pytest.fixture
def everywhere_land():
    """Reference data with land covering the globe and no nearby gazetteer points."""
    far = pd.DataFrame({"longitude": [100.0], "latitude": [-40.0]})
    return ReferenceData(
        capitals=far,
        centroids=far,
        institutions=far,
        land=gpd.GeoDataFrame(geometry=[box(-180, -90, 180, 90)], crs="EPSG:4326"),
    )


@pytest.fixture
def sloped_raster():
    """10 x 12 grid over California, rising 10 m per column to the east."""
    data = np.tile(np.arange(12, dtype=np.float32) * 10.0, (10, 1)) + 100.0
    return ElevationRaster(data=data, transform=from_origin(-125.0, 42.5, 1.0, 1.0))
