"""
Descriptive summaries of the raw occurrence table.

Every function here is read-only: the input frame is never modified.
Missing values are excluded from each statistic; no model is fit to the
data because the uncertainty and year distributions are strongly skewed.
"""

import logging
from typing import Optional

import numpy as np
import pandas as pd

from .config import YEAR_BINS

logger = logging.getLogger(__name__)

PRESERVED_SPECIMEN = "PRESERVED_SPECIMEN"
HUMAN_OBSERVATION = "HUMAN_OBSERVATION"


def percent(count, total) -> float:
    """Percentage rounded to 2 decimal places; 0.0 for an empty group."""
    if not total:
        return 0.0
    return round(float(count) / float(total) * 100, 2)


def percent_table(counts: pd.Series, label: str) -> pd.DataFrame:
    """Turn a count series into a `label, n, percent` table."""
    total = counts.sum()
    table = counts.rename("n").rename_axis(label).reset_index()
    table["percent"] = [percent(n, total) for n in table["n"]]
    return table


def name_counts(frame: pd.DataFrame) -> pd.DataFrame:
    """Number of records per scientific name, most frequent first."""
    counts = frame["name"].value_counts(sort=True)
    counts = counts[counts > 0]
    return percent_table(counts, "name")


def month_counts(frame: pd.DataFrame) -> pd.Series:
    """Record counts for each month 1-12, including months with no records."""
    months = frame["month"].dropna().astype(int)
    return months.value_counts().reindex(range(1, 13), fill_value=0).rename_axis("month").rename("n")


def year_histogram(frame: pd.DataFrame, bins: int = YEAR_BINS) -> pd.DataFrame:
    """Histogram of observation year with a fixed number of equal-width bins."""
    years = frame["year"].dropna().astype(float).to_numpy()
    if len(years) == 0:
        return pd.DataFrame({"start": [], "end": [], "n": []})
    counts, edges = np.histogram(years, bins=bins)
    return pd.DataFrame({"start": edges[:-1], "end": edges[1:], "n": counts})


def elevation_completeness(frame: pd.DataFrame, column: str = "elevation") -> pd.DataFrame:
    """
    Cross-tabulate elevation presence against basis of record.

    Returns one row per (basis_of_record, has_elevation) pair with the count
    and its percentage of the basis-of-record group.
    """
    data = pd.DataFrame({
        "basis_of_record": frame["basis_of_record"].astype("string"),
        "has_elevation": frame[column].notna(),
    }).dropna(subset=["basis_of_record"])

    table = (
        data.groupby(["basis_of_record", "has_elevation"])
        .size()
        .rename("n")
        .reset_index()
    )
    totals = table.groupby("basis_of_record")["n"].transform("sum")
    table["percent"] = [percent(n, t) for n, t in zip(table["n"], totals)]
    return table


def percent_with_elevation(table: pd.DataFrame, basis: str = PRESERVED_SPECIMEN) -> float:
    """
    Percentage of records of one basis-of-record group that carry elevation.

    Looks the group up by key in an `elevation_completeness` table, so the
    result does not depend on the order groups come back in.
    """
    match = table[(table["basis_of_record"] == basis) & (table["has_elevation"])]
    if match.empty:
        return 0.0
    return float(match["percent"].iloc[0])


def uncertainty_summary(frame: pd.DataFrame) -> dict:
    """Five-number summary of coordinate uncertainty (metres)."""
    values = frame["uncertainty_m"]
    present = values.dropna()
    summary = {
        "count": int(present.size),
        "missing": int(values.isna().sum()),
    }
    if present.empty:
        summary.update({"min": None, "q1": None, "median": None, "q3": None, "max": None})
        return summary

    q1, median, q3 = present.quantile([0.25, 0.5, 0.75]).tolist()
    summary.update({
        "min": float(present.min()),
        "q1": float(q1),
        "median": float(median),
        "q3": float(q3),
        "max": float(present.max()),
    })
    return summary


def log_uncertainty_by_year(frame: pd.DataFrame) -> pd.DataFrame:
    """
    Pairs of (year, log10 uncertainty) for records with both values.

    Non-positive uncertainties have no logarithm and are left out.
    """
    data = frame[["year", "uncertainty_m"]].dropna()
    positive = data[data["uncertainty_m"] > 0]
    dropped = len(data) - len(positive)
    if dropped:
        logger.warning(f"  Excluded {dropped} records with non-positive uncertainty from log scale")
    return pd.DataFrame({
        "year": positive["year"].astype(int).to_numpy(),
        "log10_uncertainty": np.log10(positive["uncertainty_m"].to_numpy(dtype=float)),
    })


def basis_of_record_table(frame: pd.DataFrame) -> pd.DataFrame:
    """Records per basis of record with percentages."""
    counts = frame["basis_of_record"].astype("string").dropna().value_counts()
    return percent_table(counts, "basis_of_record")


def n_specimen_institutions(frame: pd.DataFrame, basis: str = PRESERVED_SPECIMEN) -> int:
    """Distinct institutions contributing records of the given basis."""
    is_basis = (frame["basis_of_record"].astype("string") == basis).fillna(False).astype(bool)
    specimens = frame[is_basis]
    return int(specimens["institution_code"].dropna().nunique())


def missing_counts(frame: pd.DataFrame, columns: Optional[list[str]] = None) -> dict[str, int]:
    """Null count per column."""
    columns = columns or list(frame.columns)
    return {col: int(frame[col].isna().sum()) for col in columns}
