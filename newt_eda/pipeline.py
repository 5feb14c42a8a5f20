"""
Main pipeline: acquisition, profiling, cleaning, enrichment, visualization.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import geopandas as gpd
import joblib

from . import plots, profiling
from .cleaning import DEFAULT_TESTS, REFERENCE_TESTS, CleaningResult, clean_occurrences
from .config import PipelineConfig
from .gbif import fetch_occurrence_table, fetch_occurrences
from .geo import load_boundary, to_point_layer
from .reference import ReferenceData, load_reference_data
from .render3d import render_scene
from .report import (
    AcquisitionSummary,
    CleaningSummary,
    ProfilingSummary,
    ReportContext,
    TerrainSummary,
    render_report,
)
from .schema import OccurrenceTable
from .terrain import TerrainLayers, derive_terrain, fetch_elevation
from .webmap import save_web_map

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Container for everything a run produces."""

    config: PipelineConfig
    table: OccurrenceTable
    cleaning: CleaningResult
    points: gpd.GeoDataFrame
    boundary: gpd.GeoDataFrame
    terrain: TerrainLayers
    context: ReportContext
    report_path: Optional[Path] = None
    outputs: dict[str, Path] = field(default_factory=dict)


def acquire(config: PipelineConfig, memory: joblib.Memory) -> OccurrenceTable:
    fetch = memory.cache(fetch_occurrences)
    return fetch_occurrence_table(
        config.scientific_name,
        synonyms=config.synonyms,
        max_records=config.max_records,
        fetch=fetch,
    )


def profile(table: OccurrenceTable, context: ReportContext, figures_dir: Path) -> None:
    """Summaries and exploratory charts of the raw table."""
    frame = table.frame

    completeness = profiling.elevation_completeness(frame, "elevation")
    verbatim_completeness = profiling.elevation_completeness(frame, "verbatim_elevation")
    months = profiling.month_counts(frame)

    summary = ProfilingSummary(
        name_counts=profiling.name_counts(frame),
        month_counts=months,
        basis_of_record=profiling.basis_of_record_table(frame),
        elevation_completeness=completeness,
        verbatim_elevation_completeness=verbatim_completeness,
        specimen_elevation_percent=profiling.percent_with_elevation(completeness),
        specimen_verbatim_elevation_percent=profiling.percent_with_elevation(verbatim_completeness),
        uncertainty=profiling.uncertainty_summary(frame),
        n_specimen_institutions=profiling.n_specimen_institutions(frame),
        missing=profiling.missing_counts(frame),
    )
    context.set_stage("profiling", summary)

    context.add_figure("months", plots.plot_month_counts(months, figures_dir / "months.png"))
    context.add_figure("years", plots.plot_year_histogram(
        profiling.year_histogram(frame), figures_dir / "years.png"))
    context.add_figure("elevation", plots.plot_elevation_completeness(
        completeness, figures_dir / "elevation_completeness.png"))
    context.add_figure("uncertainty", plots.plot_uncertainty_histogram(
        frame, figures_dir / "uncertainty.png"))
    context.add_figure("uncertainty_year", plots.plot_uncertainty_by_year(
        profiling.log_uncertainty_by_year(frame), figures_dir / "uncertainty_by_year.png"))


def enrich(config: PipelineConfig, boundary: gpd.GeoDataFrame) -> TerrainLayers:
    """Elevation for the boundary's extent, cropped, masked and derived."""
    cache_path = None
    if config.cache_dir:
        state = config.state.lower().replace(" ", "_")
        cache_path = Path(config.cache_dir) / f"elevation_{state}_z{config.zoom}.tif"

    elevation = fetch_elevation(tuple(boundary.total_bounds), config.zoom, cache_path=cache_path)
    elevation = elevation.crop(config.crop_bbox).mask(boundary.geometry.iloc[0])
    logger.info(f"  Masked elevation raster shape: {elevation.shape}")
    return derive_terrain(elevation)


def run_pipeline(
    config: PipelineConfig,
    reference: Optional[ReferenceData] = None,
) -> PipelineResult:
    """
    Run the full occurrence analysis.

    Args:
        config: Run parameters
        reference: Reference gazetteers for the coordinate tests; downloaded
            when not given and a test needs them

    Returns:
        PipelineResult with the tables, layers, figures and report path
    """
    output_dir = Path(config.output_dir)
    figures_dir = output_dir / "figures"
    figures_dir.mkdir(parents=True, exist_ok=True)
    memory = joblib.Memory(str(config.cache_dir) if config.cache_dir else None, verbose=0)

    context = ReportContext(title=f"{config.scientific_name} occurrences in {config.state}")

    logger.info("=" * 60)
    logger.info(f"Occurrence analysis for: {config.scientific_name}")
    logger.info("=" * 60)

    # 1. Acquisition
    logger.info("\n[1/5] Fetching GBIF data...")
    table = acquire(config, memory)
    context.set_stage("acquisition", AcquisitionSummary(
        query=config.scientific_name,
        n_records=len(table),
        names=table.names,
        n_rejected=table.n_rejected,
    ))

    # 2. Profiling
    logger.info("\n[2/5] Profiling raw records...")
    profile(table, context, figures_dir)

    # 3. Cleaning
    logger.info("\n[3/5] Cleaning coordinates...")
    tests = config.cleaning_tests or DEFAULT_TESTS
    if reference is None and any(test in REFERENCE_TESTS for test in tests):
        reference = memory.cache(load_reference_data)()
    cleaning = clean_occurrences(table.frame, reference=reference, tests=tests)
    context.set_stage("cleaning", CleaningSummary(
        n_input=cleaning.n_input,
        n_complete=cleaning.n_complete,
        n_valid=cleaning.n_valid,
        n_passes=cleaning.n_passes,
        flagged=cleaning.flagged,
    ))

    # 4. Geospatial enrichment
    logger.info("\n[4/5] Building point layer and terrain...")
    points = to_point_layer(cleaning.frame)
    boundary = load_boundary(config.state)
    terrain = enrich(config, boundary)
    context.set_stage("terrain", TerrainSummary(
        region=config.state,
        zoom=config.zoom,
        crop_bbox=config.crop_bbox,
        shape=terrain.elevation.shape,
        bounds=terrain.elevation.bounds,
        elevation=terrain.elevation.stats(),
    ))

    # 5. Visualization
    logger.info("\n[5/5] Rendering maps...")
    outputs = {}
    context.add_figure("map", plots.plot_occurrence_map(points, boundary, figures_dir / "occurrence_map.png"))
    context.add_figure("terrain", plots.plot_terrain_panel(terrain, figures_dir / "terrain_panel.png"))
    context.add_figure("overlay", plots.plot_elevation_overlay(terrain, figures_dir / "elevation_overlay.png"))
    context.add_figure("web_map", save_web_map(terrain.elevation, points, output_dir / "map.html"))

    if config.render_3d:
        snapshots = render_scene(
            terrain.elevation,
            points.geometry.x.to_numpy(),
            points.geometry.y.to_numpy(),
            figures_dir,
        )
        for name, path in snapshots.items():
            context.add_figure(name, path)

    outputs.update(context.figures)
    report_path = render_report(context, output_dir / "report.html")
    outputs["report"] = report_path

    logger.info("\n" + "=" * 60)
    logger.info("COMPLETE")
    logger.info("=" * 60)

    return PipelineResult(
        config=config,
        table=table,
        cleaning=cleaning,
        points=points,
        boundary=boundary,
        terrain=terrain,
        context=context,
        report_path=report_path,
        outputs=outputs,
    )
