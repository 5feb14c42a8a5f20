"""
Newt Occurrence Explorer

Download GBIF occurrence records for a species, profile and clean them, and
map them over terrain derived from an elevation model.
"""

from .gbif import get_species_key, get_species_info, fetch_occurrences, fetch_occurrence_table
from .schema import OccurrenceRecord, OccurrenceTable, records_to_table
from .cleaning import clean_occurrences, flag_coordinates
from .terrain import ElevationRaster, TerrainLayers, derive_terrain, fetch_elevation
from .pipeline import PipelineResult, run_pipeline

__all__ = [
    "get_species_key",
    "get_species_info",
    "fetch_occurrences",
    "fetch_occurrence_table",
    "OccurrenceRecord",
    "OccurrenceTable",
    "records_to_table",
    "clean_occurrences",
    "flag_coordinates",
    "ElevationRaster",
    "TerrainLayers",
    "derive_terrain",
    "fetch_elevation",
    "PipelineResult",
    "run_pipeline",
]
