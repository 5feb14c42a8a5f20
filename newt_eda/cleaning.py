"""
Occurrence cleaning: column projection, null filtering and coordinate tests.

Each coordinate test adds a boolean `pass_<test>` column (True = the record
passed) and `is_valid` combines them. Only valid records are kept.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

import geopandas as gpd
import numpy as np
import pandas as pd
from sklearn.metrics.pairwise import haversine_distances
from sklearn.neighbors import BallTree

from .reference import ReferenceData

logger = logging.getLogger(__name__)

PROJECTED_COLUMNS = ["name", "year", "longitude", "latitude", "uncertainty_m", "basis_of_record"]
CATEGORICAL_COLUMNS = ["name", "basis_of_record"]

DEFAULT_TESTS = (
    "val",
    "equal",
    "zeros",
    "capitals",
    "centroids",
    "seas",
    "institutions",
    "gbif",
    "duplicates",
    "outliers",
)

# Test name -> ReferenceData attribute it needs
REFERENCE_TESTS = {
    "capitals": "capitals",
    "centroids": "centroids",
    "institutions": "institutions",
    "seas": "land",
}

EARTH_RADIUS_M = 6_371_000.0

CAPITALS_RADIUS_M = 10_000
CENTROIDS_RADIUS_M = 1_000
INSTITUTIONS_RADIUS_M = 100
GBIF_RADIUS_M = 1_000
GBIF_HEADQUARTERS = pd.DataFrame({"longitude": [12.58], "latitude": [55.67]})

ZERO_BUFFER_DEG = 0.5

OUTLIER_MULTIPLIER = 5.0
OUTLIER_MIN_OCCURRENCES = 7


def _coords_rad(frame: pd.DataFrame) -> np.ndarray:
    """Return [lat_rad, lon_rad] rows, the order haversine metrics expect."""
    return np.deg2rad(frame[["latitude", "longitude"]].to_numpy(dtype=float))


def near_reference(frame: pd.DataFrame, points: pd.DataFrame, radius_m: float) -> np.ndarray:
    """True where a record lies within `radius_m` of any reference point."""
    if points.empty:
        return np.zeros(len(frame), dtype=bool)
    tree = BallTree(_coords_rad(points), metric="haversine")
    distances, _ = tree.query(_coords_rad(frame), k=1)
    return distances[:, 0] * EARTH_RADIUS_M < radius_m


def check_ranges(frame: pd.DataFrame, reference: Optional[ReferenceData]) -> pd.Series:
    return frame["latitude"].between(-90, 90) & frame["longitude"].between(-180, 180)


def check_equal(frame: pd.DataFrame, reference: Optional[ReferenceData]) -> pd.Series:
    return frame["latitude"].abs() != frame["longitude"].abs()


def check_zeros(frame: pd.DataFrame, reference: Optional[ReferenceData]) -> pd.Series:
    lat = frame["latitude"]
    lon = frame["longitude"]
    near_origin = np.hypot(lat, lon) <= ZERO_BUFFER_DEG
    return ~((lat == 0) | (lon == 0) | near_origin)


def check_capitals(frame: pd.DataFrame, reference: ReferenceData) -> pd.Series:
    near = near_reference(frame, reference.capitals, CAPITALS_RADIUS_M)
    return pd.Series(~near, index=frame.index)


def check_centroids(frame: pd.DataFrame, reference: ReferenceData) -> pd.Series:
    near = near_reference(frame, reference.centroids, CENTROIDS_RADIUS_M)
    return pd.Series(~near, index=frame.index)


def check_institutions(frame: pd.DataFrame, reference: ReferenceData) -> pd.Series:
    near = near_reference(frame, reference.institutions, INSTITUTIONS_RADIUS_M)
    return pd.Series(~near, index=frame.index)


def check_gbif(frame: pd.DataFrame, reference: Optional[ReferenceData]) -> pd.Series:
    near = near_reference(frame, GBIF_HEADQUARTERS, GBIF_RADIUS_M)
    return pd.Series(~near, index=frame.index)


def check_seas(frame: pd.DataFrame, reference: ReferenceData) -> pd.Series:
    points = gpd.GeoDataFrame(
        geometry=gpd.points_from_xy(frame["longitude"], frame["latitude"]),
        index=frame.index,
        crs="EPSG:4326",
    )
    on_land = gpd.sjoin(points, reference.land[["geometry"]], how="inner", predicate="intersects")
    return pd.Series(frame.index.isin(on_land.index.unique()), index=frame.index)


def check_duplicates(frame: pd.DataFrame, reference: Optional[ReferenceData]) -> pd.Series:
    """
    Flag repeated coordinates of the same name.

    Records are sorted on all their values before picking the survivor, so
    the surviving record does not depend on row order.
    """
    ordered = frame[PROJECTED_COLUMNS].assign(_row=frame.index).sort_values(
        PROJECTED_COLUMNS + ["_row"], kind="mergesort"
    )
    repeated = ordered.duplicated(subset=["name", "longitude", "latitude"], keep="first")
    repeated.index = ordered["_row"].to_numpy()
    return ~repeated.reindex(frame.index)


def mean_distances_km(coords_rad: np.ndarray, chunk_size: int = 2000) -> np.ndarray:
    """Mean great-circle distance from each point to all other points."""
    n = len(coords_rad)
    means = np.zeros(n)
    if n < 2:
        return means
    for start in range(0, n, chunk_size):
        block = haversine_distances(coords_rad[start:start + chunk_size], coords_rad)
        means[start:start + chunk_size] = block.sum(axis=1) / (n - 1)
    return means * EARTH_RADIUS_M / 1000


def check_outliers(frame: pd.DataFrame, reference: Optional[ReferenceData]) -> pd.Series:
    """
    Flag records far from the rest of their species.

    Distances are measured between distinct sites, so records repeated at
    one location do not collapse the spread. A site is an outlier when its
    mean distance to the other sites of the same name exceeds
    Q3 + OUTLIER_MULTIPLIER * IQR of those means; every record at that site
    is flagged.
    """
    passed = pd.Series(True, index=frame.index)

    for name, group in frame.groupby("name", observed=True):
        sites = group[["longitude", "latitude"]].drop_duplicates()
        if len(sites) < OUTLIER_MIN_OCCURRENCES:
            logger.warning(f"  Outlier test skipped for {name}: only {len(sites)} distinct sites")
            continue
        means = mean_distances_km(_coords_rad(sites))
        q1, q3 = np.percentile(means, [25, 75])
        threshold = q3 + OUTLIER_MULTIPLIER * (q3 - q1)

        outlying = pd.MultiIndex.from_frame(sites[means > threshold])
        at_outlying_site = pd.MultiIndex.from_frame(group[["longitude", "latitude"]]).isin(outlying)
        passed.loc[group.index[at_outlying_site]] = False

    return passed


TESTS: dict[str, Callable[[pd.DataFrame, Optional[ReferenceData]], pd.Series]] = {
    "val": check_ranges,
    "equal": check_equal,
    "zeros": check_zeros,
    "capitals": check_capitals,
    "centroids": check_centroids,
    "seas": check_seas,
    "institutions": check_institutions,
    "gbif": check_gbif,
    "duplicates": check_duplicates,
    "outliers": check_outliers,
}


def project_complete(frame: pd.DataFrame) -> pd.DataFrame:
    """
    Keep the cleaning columns and drop rows with a null in any of them.

    Categories that no longer occur after filtering are removed.
    """
    missing = set(PROJECTED_COLUMNS) - set(frame.columns)
    if missing:
        raise ValueError(f"Missing required columns: {sorted(missing)}")

    subset = frame[PROJECTED_COLUMNS].dropna().copy()
    for col in CATEGORICAL_COLUMNS:
        subset[col] = subset[col].astype("category").cat.remove_unused_categories()
    return subset


def flag_coordinates(
    frame: pd.DataFrame,
    tests: Iterable[str] = DEFAULT_TESTS,
    reference: Optional[ReferenceData] = None,
) -> pd.DataFrame:
    """
    Run the coordinate test battery, keyed by species name.

    Args:
        frame: Projected, null-free occurrence frame
        tests: Names of tests to run (see TESTS)
        reference: Reference gazetteers, required by the capitals,
            centroids, institutions and seas tests

    Returns:
        Copy of the frame with `pass_<test>` columns and `is_valid`
    """
    tests = list(tests)
    unknown = [t for t in tests if t not in TESTS]
    if unknown:
        raise ValueError(f"Unknown coordinate tests: {unknown}. Choose from {list(TESTS)}")
    for test in tests:
        attr = REFERENCE_TESTS.get(test)
        if attr and (reference is None or getattr(reference, attr) is None):
            raise ValueError(f"Coordinate test '{test}' requires reference data ({attr})")

    if not frame.index.is_unique:
        raise ValueError("Occurrence frame index must be unique")

    annotated = frame.copy()
    valid = pd.Series(True, index=frame.index)

    for test in tests:
        if frame.empty:
            passed = pd.Series(dtype=bool, index=frame.index)
        else:
            passed = TESTS[test](frame, reference).astype(bool)
        annotated[f"pass_{test}"] = passed
        valid &= passed

    annotated["is_valid"] = valid.astype(bool)
    return annotated


@dataclass
class CleaningResult:
    """Cleaned occurrences and the counts behind them."""

    frame: pd.DataFrame
    n_input: int
    n_complete: int
    n_valid: int
    n_passes: int
    flagged: dict[str, int] = field(default_factory=dict)

    @property
    def n_removed(self) -> int:
        return self.n_input - self.n_valid


def clean_occurrences(
    frame: pd.DataFrame,
    reference: Optional[ReferenceData] = None,
    tests: Iterable[str] = DEFAULT_TESTS,
) -> CleaningResult:
    """
    Project, drop incomplete rows and remove records failing any test.

    The battery is rerun on the surviving records until no record is
    flagged, so cleaning an already-clean frame returns it unchanged.

    Args:
        frame: Raw occurrence frame
        reference: Reference gazetteers for the tests that need them
        tests: Names of tests to run

    Returns:
        CleaningResult with the valid, annotated records
    """
    tests = list(tests)
    complete = project_complete(frame)
    logger.info(f"  Complete records: {len(complete)} of {len(frame)}")

    flagged = {test: 0 for test in tests}
    current = complete
    n_passes = 0

    while True:
        annotated = flag_coordinates(current, tests, reference)
        n_passes += 1
        for test in tests:
            flagged[test] += int((~annotated[f"pass_{test}"]).sum())
        if annotated["is_valid"].all():
            break
        current = project_complete(annotated[annotated["is_valid"]])

    for test, count in flagged.items():
        if count:
            logger.info(f"  Flagged by {test}: {count}")
    logger.info(f"  Valid records: {len(annotated)} after {n_passes} pass(es)")

    return CleaningResult(
        frame=annotated,
        n_input=len(frame),
        n_complete=len(complete),
        n_valid=len(annotated),
        n_passes=n_passes,
        flagged=flagged,
    )
