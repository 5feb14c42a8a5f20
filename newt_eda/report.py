"""
Report context and rendering.

Each pipeline stage fills in its own summary exactly once; the template only
reads from the context and never recomputes values.
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

import pandas as pd
from jinja2 import Environment, PackageLoader, select_autoescape

logger = logging.getLogger(__name__)


@dataclass
class AcquisitionSummary:
    query: str
    n_records: int
    names: list[str]
    n_rejected: int = 0


@dataclass
class ProfilingSummary:
    name_counts: pd.DataFrame
    month_counts: pd.Series
    basis_of_record: pd.DataFrame
    elevation_completeness: pd.DataFrame
    verbatim_elevation_completeness: pd.DataFrame
    specimen_elevation_percent: float
    specimen_verbatim_elevation_percent: float
    uncertainty: dict
    n_specimen_institutions: int
    missing: dict[str, int]


@dataclass
class CleaningSummary:
    n_input: int
    n_complete: int
    n_valid: int
    n_passes: int
    flagged: dict[str, int]


@dataclass
class TerrainSummary:
    region: str
    zoom: int
    crop_bbox: tuple[float, float, float, float]
    shape: tuple[int, int]
    bounds: tuple[float, float, float, float]
    elevation: dict


@dataclass
class ReportContext:
    """Values substituted into the report, filled stage by stage."""

    title: str
    acquisition: Optional[AcquisitionSummary] = None
    profiling: Optional[ProfilingSummary] = None
    cleaning: Optional[CleaningSummary] = None
    terrain: Optional[TerrainSummary] = None
    figures: dict[str, Path] = field(default_factory=dict)

    def set_stage(self, stage: str, summary) -> None:
        """Record a stage summary; each stage may be recorded only once."""
        if stage not in ("acquisition", "profiling", "cleaning", "terrain"):
            raise ValueError(f"Unknown report stage: {stage}")
        if getattr(self, stage) is not None:
            raise RuntimeError(f"Report stage '{stage}' already recorded")
        setattr(self, stage, summary)

    def add_figure(self, key: str, path: Path) -> None:
        self.figures[key] = Path(path)


def _table(frame: pd.DataFrame) -> str:
    return frame.to_html(index=False, classes="table", border=0)


def _environment() -> Environment:
    env = Environment(
        loader=PackageLoader("newt_eda", "templates"),
        autoescape=select_autoescape(["html"]),
    )
    env.filters["table"] = _table
    return env


def render_report(context: ReportContext, path: Path) -> Path:
    """
    Render the HTML report.

    Figure paths are written relative to the report location.

    Raises:
        RuntimeError: if a stage summary is missing
    """
    missing = [stage for stage in ("acquisition", "profiling", "cleaning") if getattr(context, stage) is None]
    if missing:
        raise RuntimeError(f"Report context incomplete, missing stages: {missing}")

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    figures = {
        key: Path(os.path.relpath(fig, path.parent)).as_posix()
        for key, fig in context.figures.items()
    }

    template = _environment().get_template("report.html.j2")
    html = template.render(
        ctx=context,
        figures=figures,
        uncertainty=context.profiling.uncertainty,
        cleaning=asdict(context.cleaning),
    )
    path.write_text(html, encoding="utf-8")
    logger.info(f"  Saved report: {path}")
    return path
