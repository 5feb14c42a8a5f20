"""
Fixed analysis parameters and the pipeline configuration object.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


# Target taxon
GENUS = "Taricha"
SPECIES = "torosa"
STATE = "California"

# Crop extent for the elevation raster: (min_lon, min_lat, max_lon, max_lat)
CROP_BBOX = (-125.0, 32.25, -113.0, 42.5)

# Viewport of the static occurrence map: (min_lon, min_lat, max_lon, max_lat)
MAP_VIEWPORT = (-122.5, 36.0, -118.5, 41.25)

# Coordinate uncertainty size bins (metres), half-open [a, b)
UNCERTAINTY_BREAKS = [0, 10, 100, 1000, 10000, 10_000_000]

# Year colour scale
YEAR_DOMAIN = (1930, 2030)
YEAR_BREAKS = [1930, 1975, 2022]

YEAR_BINS = 30

# Terrarium tile zoom level for the DEM
DEM_ZOOM = 6

# Hillshade illumination (degrees)
SUN_ANGLE = 40
SUN_DIRECTION = 270

# 3D rendering
TEXTURE_COLORS = ("#fff673", "#55967a", "#8fb28a", "#55967a", "#cfe0a9")
SHADOW_ZSCALE = 250
RENDER_ZSCALE = 250
POINT_SIZE = 8
POINT_COLOR = "#d7191c"
POINT_OFFSET = 50

# Data sources
GBIF_API = "https://api.gbif.org/v1"
TERRARIUM_URL = "https://s3.amazonaws.com/elevation-tiles-prod/terrarium/{z}/{x}/{y}.png"
STATES_URL = "https://www2.census.gov/geo/tiger/GENZ2022/shp/cb_2022_us_state_20m.zip"
NATURAL_EARTH_URL = "https://naciscdn.org/naturalearth"


@dataclass
class PipelineConfig:
    """Parameters for one run of the analysis."""

    genus: str = GENUS
    species: str = SPECIES
    state: str = STATE
    output_dir: Path = Path("output")
    cache_dir: Optional[Path] = Path("cache")
    zoom: int = DEM_ZOOM
    max_records: Optional[int] = None
    crop_bbox: tuple[float, float, float, float] = CROP_BBOX
    render_3d: bool = True
    cleaning_tests: Optional[tuple[str, ...]] = None
    synonyms: list[str] = field(default_factory=list)

    @property
    def scientific_name(self) -> str:
        return f"{self.genus} {self.species}"
