"""Tests for coordinate cleaning."""

import numpy as np
import pandas as pd
import pytest

from newt_eda.cleaning import (
    DEFAULT_TESTS,
    PROJECTED_COLUMNS,
    clean_occurrences,
    flag_coordinates,
    project_complete,
)

OFFLINE_TESTS = ("val", "equal", "zeros", "gbif", "duplicates", "outliers")


def make_frame(rows):
    frame = pd.DataFrame(rows, columns=PROJECTED_COLUMNS)
    frame["year"] = frame["year"].astype("Int64")
    frame["name"] = frame["name"].astype("category")
    frame["basis_of_record"] = frame["basis_of_record"].astype("category")
    return frame


@pytest.fixture
def five_records():
    """One null year, one duplicate of a valid record, three valid distinct records."""
    return make_frame([
        ("Taricha torosa", 2001, -121.50, 37.50, 30.0, "HUMAN_OBSERVATION"),
        ("Taricha torosa", None, -121.60, 37.60, 30.0, "HUMAN_OBSERVATION"),
        ("Taricha torosa", 2005, -121.70, 37.70, 10.0, "PRESERVED_SPECIMEN"),
        ("Taricha torosa", 2010, -121.80, 37.80, 500.0, "HUMAN_OBSERVATION"),
        ("Taricha torosa", 2010, -121.80, 37.80, 500.0, "HUMAN_OBSERVATION"),
    ])


def test_five_record_scenario(five_records):
    result = clean_occurrences(five_records, tests=OFFLINE_TESTS)

    assert len(result.frame) == 3
    assert result.n_input == 5
    assert result.n_complete == 4
    assert result.flagged["duplicates"] == 1
    assert sorted(result.frame["longitude"]) == [-121.8, -121.7, -121.5]


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_five_record_scenario_independent_of_order(five_records, seed):
    expected = clean_occurrences(five_records, tests=OFFLINE_TESTS).frame
    shuffled = five_records.sample(frac=1, random_state=seed)

    result = clean_occurrences(shuffled, tests=OFFLINE_TESTS).frame

    assert sorted(result.index) == sorted(expected.index)


def test_duplicate_survivor_independent_of_order():
    frame = make_frame([
        ("Taricha torosa", 2010, -121.8, 37.8, 500.0, "HUMAN_OBSERVATION"),
        ("Taricha torosa", 1990, -121.8, 37.8, 50.0, "PRESERVED_SPECIMEN"),
    ])
    forward = clean_occurrences(frame, tests=("duplicates",)).frame
    backward = clean_occurrences(frame.iloc[::-1], tests=("duplicates",)).frame

    assert list(forward.index) == list(backward.index) == [1]


def test_cleaned_rows_complete_and_in_range(occurrence_frame, everywhere_land):
    result = clean_occurrences(occurrence_frame, reference=everywhere_land)
    frame = result.frame

    assert len(frame) > 0
    assert not frame[["name", "year", "longitude", "latitude", "uncertainty_m"]].isna().any().any()
    assert frame["latitude"].between(-90, 90).all()
    assert frame["longitude"].between(-180, 180).all()
    assert frame["is_valid"].all()
    for test in DEFAULT_TESTS:
        assert f"pass_{test}" in frame.columns


def test_projection_drops_elevation_and_unused_categories(occurrence_frame):
    projected = project_complete(occurrence_frame)

    assert list(projected.columns) == PROJECTED_COLUMNS
    # the only "Taricha torosa torosa" record has no uncertainty
    assert list(projected["name"].cat.categories) == ["Taricha torosa (Rathke, 1833)"]
    assert len(projected) == 4


def test_cleaning_is_idempotent(everywhere_land):
    rng = np.random.default_rng(7)
    n = 40
    rows = [
        ("Taricha torosa", int(y), float(lon), float(lat), 100.0, "HUMAN_OBSERVATION")
        for y, lon, lat in zip(
            rng.integers(1950, 2024, n),
            rng.normal(-121.5, 0.3, n),
            rng.normal(37.5, 0.3, n),
        )
    ]
    rows += [
        ("Taricha torosa", 2000, 10.0, 50.0, 100.0, "HUMAN_OBSERVATION"),
        ("Taricha torosa", 2000, 20.0, 20.0, 100.0, "HUMAN_OBSERVATION"),
        ("Taricha torosa", 2000, 0.0, 0.0, 100.0, "HUMAN_OBSERVATION"),
    ]
    frame = make_frame(rows)

    once = clean_occurrences(frame, reference=everywhere_land)
    twice = clean_occurrences(once.frame, reference=everywhere_land)

    assert set(twice.frame.index) == set(once.frame.index)
    assert twice.n_passes == 1
    assert n + 2 not in once.frame.index
    assert n + 1 not in once.frame.index


def test_equal_and_zero_coordinates():
    frame = make_frame([
        ("Taricha torosa", 2000, -35.0, 35.0, 10.0, "HUMAN_OBSERVATION"),
        ("Taricha torosa", 2000, 0.0, 37.0, 10.0, "HUMAN_OBSERVATION"),
        ("Taricha torosa", 2000, 0.2, 0.2, 10.0, "HUMAN_OBSERVATION"),
        ("Taricha torosa", 2000, -121.0, 37.0, 10.0, "HUMAN_OBSERVATION"),
    ])
    flagged = flag_coordinates(frame, tests=("equal", "zeros"))

    assert list(flagged["pass_equal"]) == [False, True, False, True]
    assert list(flagged["pass_zeros"]) == [True, False, False, True]
    assert list(flagged["is_valid"]) == [False, False, False, True]


def test_out_of_range_coordinates_flagged():
    frame = make_frame([
        ("Taricha torosa", 2000, -121.0, 95.0, 10.0, "HUMAN_OBSERVATION"),
        ("Taricha torosa", 2000, 190.0, 37.0, 10.0, "HUMAN_OBSERVATION"),
        ("Taricha torosa", 2000, -121.0, 37.0, 10.0, "HUMAN_OBSERVATION"),
    ])
    flagged = flag_coordinates(frame, tests=("val",))
    assert list(flagged["pass_val"]) == [False, False, True]


def test_gbif_headquarters_flagged():
    frame = make_frame([
        ("Taricha torosa", 2000, 12.5801, 55.6701, 10.0, "HUMAN_OBSERVATION"),
        ("Taricha torosa", 2000, -121.0, 37.0, 10.0, "HUMAN_OBSERVATION"),
    ])
    flagged = flag_coordinates(frame, tests=("gbif",))
    assert list(flagged["pass_gbif"]) == [False, True]


def test_reference_point_tests(everywhere_land):
    everywhere_land.capitals = pd.DataFrame({"longitude": [-121.4944], "latitude": [38.5816]})
    everywhere_land.institutions = pd.DataFrame({"longitude": [-122.2585], "latitude": [37.8719]})
    frame = make_frame([
        ("Taricha torosa", 2000, -121.50, 38.58, 10.0, "HUMAN_OBSERVATION"),
        ("Taricha torosa", 2000, -122.2585, 37.8719, 10.0, "PRESERVED_SPECIMEN"),
        ("Taricha torosa", 2000, -121.00, 37.00, 10.0, "HUMAN_OBSERVATION"),
    ])
    flagged = flag_coordinates(frame, tests=("capitals", "institutions"), reference=everywhere_land)

    assert list(flagged["pass_capitals"]) == [False, True, True]
    assert list(flagged["pass_institutions"]) == [True, False, True]


def test_sea_records_flagged(everywhere_land):
    from shapely.geometry import box
    import geopandas as gpd

    everywhere_land.land = gpd.GeoDataFrame(geometry=[box(-124.5, 32.5, -114.0, 42.0)], crs="EPSG:4326")
    frame = make_frame([
        ("Taricha torosa", 2000, -121.0, 37.0, 10.0, "HUMAN_OBSERVATION"),
        ("Taricha torosa", 2000, -126.0, 37.0, 10.0, "HUMAN_OBSERVATION"),
    ])
    flagged = flag_coordinates(frame, tests=("seas",), reference=everywhere_land)
    assert list(flagged["pass_seas"]) == [True, False]


def test_geographic_outlier_flagged():
    rows = [
        ("Taricha torosa", 2000, -121.5 + 0.01 * i, 37.5 + 0.01 * (i % 3), 10.0, "HUMAN_OBSERVATION")
        for i in range(10)
    ]
    rows.append(("Taricha torosa", 2000, -75.0, 40.0, 10.0, "HUMAN_OBSERVATION"))
    frame = make_frame(rows)

    flagged = flag_coordinates(frame, tests=("outliers",))

    assert not flagged.loc[10, "pass_outliers"]
    assert flagged.loc[:9, "pass_outliers"].all()


def test_repeated_site_does_not_make_neighbour_an_outlier():
    rows = [("Taricha torosa", 2000, -121.5, 37.5, 10.0, "HUMAN_OBSERVATION")] * 10
    rows.append(("Taricha torosa", 2001, -121.51, 37.5, 10.0, "HUMAN_OBSERVATION"))
    frame = make_frame(rows)

    result = clean_occurrences(frame, tests=("duplicates", "outliers"))

    assert result.n_valid == 2
    assert result.flagged == {"duplicates": 9, "outliers": 0}
    assert 10 in result.frame.index


def test_outliers_measured_between_distinct_sites():
    # many records at one pond plus seven nearby sites along a creek
    offsets = [0.0, 0.004, 0.009, 0.013, 0.020, 0.026, 0.031, 0.037]
    rows = [("Taricha torosa", 2000 + i, -121.5, 37.5, 10.0, "HUMAN_OBSERVATION") for i in range(20)]
    rows += [
        ("Taricha torosa", 2000, -121.5 + offset, 37.5, 10.0, "HUMAN_OBSERVATION")
        for offset in offsets[1:]
    ]
    frame = make_frame(rows)

    flagged = flag_coordinates(frame, tests=("outliers",))

    assert flagged["pass_outliers"].all()


def test_outlier_flags_every_record_at_outlying_site():
    rows = [
        ("Taricha torosa", 2000, -121.5 + 0.01 * i, 37.5 + 0.01 * (i % 3), 10.0, "HUMAN_OBSERVATION")
        for i in range(10)
    ]
    rows += [("Taricha torosa", 2000 + i, -75.0, 40.0, 10.0, "HUMAN_OBSERVATION") for i in range(2)]
    frame = make_frame(rows)

    flagged = flag_coordinates(frame, tests=("outliers",))

    assert not flagged.loc[10, "pass_outliers"]
    assert not flagged.loc[11, "pass_outliers"]
    assert flagged.loc[:9, "pass_outliers"].all()


def test_outlier_test_skipped_for_small_groups():
    frame = make_frame([
        ("Taricha torosa", 2000, -121.5, 37.5, 10.0, "HUMAN_OBSERVATION"),
        ("Taricha torosa", 2000, -121.6, 37.6, 10.0, "HUMAN_OBSERVATION"),
        ("Taricha torosa", 2000, -75.0, 40.0, 10.0, "HUMAN_OBSERVATION"),
    ])
    flagged = flag_coordinates(frame, tests=("outliers",))
    assert flagged["pass_outliers"].all()


def test_reference_tests_require_reference(five_records):
    with pytest.raises(ValueError, match="requires reference data"):
        clean_occurrences(five_records, tests=("capitals",))


def test_unknown_test_rejected(five_records):
    with pytest.raises(ValueError, match="Unknown coordinate tests"):
        flag_coordinates(project_complete(five_records), tests=("moon",))


def test_missing_columns_rejected():
    with pytest.raises(ValueError, match="Missing required columns"):
        project_complete(pd.DataFrame({"name": ["Taricha torosa"]}))
