"""
Typed schema for GBIF occurrence records.

Raw GBIF search results carry a wide, loosely-typed payload. Records are
validated against `OccurrenceRecord` at ingestion; the fields the analysis
uses become typed DataFrame columns and everything else is kept per row in a
side-channel rather than dropped.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

FEET_TO_METRES = 0.3048

_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")
_FEET = re.compile(r"(?<![a-z])(?:ft|feet|foot)\b|\d\s*'")

# Column name -> pandas dtype for the occurrence frame
COLUMN_DTYPES = {
    "key": "Int64",
    "name": "category",
    "species": "string",
    "year": "Int64",
    "month": "Int64",
    "latitude": "float64",
    "longitude": "float64",
    "uncertainty_m": "float64",
    "elevation": "float64",
    "verbatim_elevation": "float64",
    "basis_of_record": "category",
    "institution_code": "string",
}

COLUMNS = list(COLUMN_DTYPES)


def parse_verbatim_elevation(value: Any) -> Optional[float]:
    """
    Parse a free-text elevation into metres.

    Takes the first number in the text; values given in feet are converted.

    Examples:
        "1200 m" -> 1200.0, "400-500 ft" -> 121.92, "unknown" -> None
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).lower()
    match = _NUMBER.search(text.replace(",", ""))
    if match is None:
        return None

    number = float(match.group())
    if _FEET.search(text):
        number *= FEET_TO_METRES
    return number


class OccurrenceRecord(BaseModel):
    """One GBIF occurrence, keyed by GBIF field names."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    key: Optional[int] = None
    name: Optional[str] = Field(default=None, alias="scientificName")
    species: Optional[str] = None
    year: Optional[int] = None
    month: Optional[int] = None
    latitude: Optional[float] = Field(default=None, alias="decimalLatitude")
    longitude: Optional[float] = Field(default=None, alias="decimalLongitude")
    uncertainty_m: Optional[float] = Field(default=None, alias="coordinateUncertaintyInMeters")
    elevation: Optional[float] = None
    verbatim_elevation: Optional[float] = Field(default=None, alias="verbatimElevation")
    basis_of_record: Optional[str] = Field(default=None, alias="basisOfRecord")
    institution_code: Optional[str] = Field(default=None, alias="institutionCode")

    @field_validator("month", mode="before")
    @classmethod
    def _month_in_range(cls, value: Any) -> Optional[int]:
        if value is None:
            return None
        try:
            month = int(value)
        except (TypeError, ValueError):
            return None
        return month if 1 <= month <= 12 else None

    @field_validator("verbatim_elevation", mode="before")
    @classmethod
    def _parse_verbatim(cls, value: Any) -> Optional[float]:
        return parse_verbatim_elevation(value)

    @field_validator("name", "basis_of_record", "institution_code", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None


@dataclass
class OccurrenceTable:
    """Validated occurrences plus the fields the schema does not name."""

    frame: pd.DataFrame
    extras: dict[int, dict[str, Any]] = field(default_factory=dict)
    n_rejected: int = 0

    def __len__(self) -> int:
        return len(self.frame)

    @property
    def names(self) -> list[str]:
        """Distinct scientific names, sorted."""
        return sorted(self.frame["name"].dropna().unique().tolist())


def empty_frame() -> pd.DataFrame:
    return pd.DataFrame({col: pd.Series(dtype=dtype) for col, dtype in COLUMN_DTYPES.items()})


def records_to_table(records: list[dict]) -> OccurrenceTable:
    """
    Validate raw GBIF occurrence dicts and build a typed table.

    Records that fail validation outright are skipped and counted in
    `n_rejected`.

    Args:
        records: Raw occurrence dictionaries from the GBIF search API

    Returns:
        OccurrenceTable with typed frame and per-row extra fields
    """
    rows = []
    extras = {}
    n_rejected = 0

    for raw in records:
        try:
            record = OccurrenceRecord.model_validate(raw)
        except ValidationError as exc:
            n_rejected += 1
            logger.debug(f"Rejected record {raw.get('key')}: {exc}")
            continue
        extras[len(rows)] = dict(record.model_extra or {})
        rows.append(record.model_dump(include=set(COLUMNS)))

    if n_rejected:
        logger.warning(f"{n_rejected} records failed schema validation")

    if not rows:
        return OccurrenceTable(frame=empty_frame(), extras={}, n_rejected=n_rejected)

    frame = pd.DataFrame(rows, columns=COLUMNS).astype(COLUMN_DTYPES)
    return OccurrenceTable(frame=frame, extras=extras, n_rejected=n_rejected)
