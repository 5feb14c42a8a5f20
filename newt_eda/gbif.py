"""
GBIF API utilities for fetching species occurrence data.
"""

import logging
from typing import Optional

import requests
from tqdm import tqdm

from .config import GBIF_API
from .schema import OccurrenceTable, records_to_table

logger = logging.getLogger(__name__)

# Maximum page size accepted by the occurrence search endpoint
PAGE_SIZE = 300


class GBIFRequestError(RuntimeError):
    """A GBIF API request failed."""

    def __init__(self, endpoint: str, params: dict, cause: Exception):
        self.endpoint = endpoint
        self.params = params
        super().__init__(f"GBIF request to {endpoint} failed with params {params}: {cause}")


def _get(endpoint: str, params: dict) -> dict:
    url = f"{GBIF_API}/{endpoint}"
    try:
        response = requests.get(url, params=params)
        response.raise_for_status()
        return response.json()
    except requests.RequestException as exc:
        raise GBIFRequestError(endpoint, params, exc) from exc


def get_species_key(species_name: str) -> Optional[int]:
    """
    Get GBIF taxon key for a species by name.

    Args:
        species_name: Scientific name of the species (e.g., "Taricha torosa")

    Returns:
        GBIF taxon key or None if not found
    """
    data = _get("species/match", {"name": species_name})

    if data.get("matchType") == "NONE":
        return None

    return data.get("usageKey")


def get_species_info(species_name: str) -> dict:
    """
    Match a name against the GBIF backbone.

    Synonyms resolve to their accepted taxon, so occurrences filed under
    older names are included when searching by the returned key.

    Raises:
        ValueError: if the name does not match any taxon
    """
    data = _get("species/match", {"name": species_name})

    if data.get("matchType") == "NONE" or data.get("usageKey") is None:
        raise ValueError(f"Species not found in GBIF: {species_name}")

    is_synonym = bool(data.get("synonym"))
    taxon_key = data.get("acceptedUsageKey") if is_synonym else data.get("usageKey")

    return {
        "taxon_key": taxon_key or data["usageKey"],
        "usage_key": data["usageKey"],
        "scientific_name": data.get("scientificName", species_name),
        "canonical_name": data.get("canonicalName", species_name),
        "synonym": is_synonym,
        "match_type": data.get("matchType"),
    }


def fetch_occurrences(
    taxon_key: int,
    bbox: Optional[tuple[float, float, float, float]] = None,
    country: Optional[str] = None,
    max_records: Optional[int] = None,
    limit: int = PAGE_SIZE,
) -> list[dict]:
    """
    Fetch occurrences with coordinates from the GBIF API with pagination.

    Args:
        taxon_key: GBIF taxon key for the species
        bbox: Optional (min_lon, min_lat, max_lon, max_lat) filter
        country: Optional ISO 3166-1 alpha-2 country code filter
        max_records: Stop after this many records (default: all)
        limit: Number of records per API request

    Returns:
        List of occurrence dictionaries
    """
    params = {
        "taxonKey": taxon_key,
        "hasCoordinate": "true",
        "limit": limit,
    }
    if bbox is not None:
        min_lon, min_lat, max_lon, max_lat = bbox
        params["decimalLatitude"] = f"{min_lat},{max_lat}"
        params["decimalLongitude"] = f"{min_lon},{max_lon}"
    if country is not None:
        params["country"] = country

    all_occurrences = []
    offset = 0
    progress = None

    try:
        while True:
            data = _get("occurrence/search", {**params, "offset": offset})

            if progress is None:
                total = data.get("count", 0)
                if max_records is not None:
                    total = min(total, max_records)
                progress = tqdm(total=total, desc="Fetching occurrences", unit="rec")

            results = data.get("results", [])
            if not results:
                break

            all_occurrences.extend(results)
            progress.update(len(results))

            if max_records is not None and len(all_occurrences) >= max_records:
                all_occurrences = all_occurrences[:max_records]
                break

            if data.get("endOfRecords") or len(all_occurrences) >= data.get("count", 0):
                break

            offset += limit
    finally:
        if progress is not None:
            progress.close()

    return all_occurrences


def fetch_occurrence_table(
    species_name: str,
    synonyms: Optional[list[str]] = None,
    bbox: Optional[tuple[float, float, float, float]] = None,
    max_records: Optional[int] = None,
    fetch=fetch_occurrences,
) -> OccurrenceTable:
    """
    Fetch and validate all occurrences for a species and its listed synonyms.

    Names resolving to the same accepted taxon are fetched once.

    Args:
        species_name: Scientific name, e.g. "Taricha torosa"
        synonyms: Additional names to include
        bbox: Optional (min_lon, min_lat, max_lon, max_lat) filter
        max_records: Per-taxon record cap
        fetch: Occurrence fetcher, replaceable with a cached wrapper

    Returns:
        OccurrenceTable of validated records
    """
    taxon_keys = []
    for name in [species_name, *(synonyms or [])]:
        info = get_species_info(name)
        logger.info(f"  Matched: {info['scientific_name']} (key: {info['taxon_key']})")
        if info["taxon_key"] not in taxon_keys:
            taxon_keys.append(info["taxon_key"])

    records = []
    for taxon_key in taxon_keys:
        records.extend(fetch(taxon_key, bbox=bbox, max_records=max_records))

    table = records_to_table(records)
    logger.info(f"  Found {len(table)} occurrences under {len(table.names)} names")
    return table
