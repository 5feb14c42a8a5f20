"""
Command-line interface for the occurrence analysis.
"""

import argparse
import logging
from pathlib import Path

from .cleaning import DEFAULT_TESTS
from .config import DEM_ZOOM, GENUS, SPECIES, STATE, PipelineConfig
from .pipeline import run_pipeline


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Explore GBIF occurrences of a species over terrain")
    parser.add_argument("genus", nargs="?", default=GENUS, help=f"Genus (default: {GENUS})")
    parser.add_argument("species", nargs="?", default=SPECIES, help=f"Specific epithet (default: {SPECIES})")
    parser.add_argument("--synonym", action="append", default=[], dest="synonyms",
                        help="Additional scientific name to include (repeatable)")
    parser.add_argument("--state", default=STATE, help=f"US state for the terrain (default: {STATE})")
    parser.add_argument("--output-dir", "-o", default="./output", help="Output directory")
    parser.add_argument("--cache-dir", default="./cache", help="Cache directory for downloads")
    parser.add_argument("--no-cache", action="store_true", help="Do not cache downloads")
    parser.add_argument("--zoom", "-z", type=int, default=DEM_ZOOM, help="Elevation tile zoom level")
    parser.add_argument("--max-records", type=int, default=None, help="Cap on occurrences fetched")
    parser.add_argument("--tests", nargs="+", default=None, choices=list(DEFAULT_TESTS),
                        help="Coordinate tests to run (default: all)")
    parser.add_argument("--skip-3d", action="store_true", help="Skip the 3D terrain renders")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    config = PipelineConfig(
        genus=args.genus,
        species=args.species,
        synonyms=args.synonyms,
        state=args.state,
        output_dir=Path(args.output_dir),
        cache_dir=None if args.no_cache else Path(args.cache_dir),
        zoom=args.zoom,
        max_records=args.max_records,
        render_3d=not args.skip_3d,
        cleaning_tests=tuple(args.tests) if args.tests else None,
    )

    result = run_pipeline(config)
    print(f"\nReport: {result.report_path}")
    return result


if __name__ == "__main__":
    main()
