#!/usr/bin/env python3
"""
Main query script: extract plot-level point clouds from a tile catalog.

Pipeline:
1. Build the catalog (tile directory, tindex, or single file)
2. Validate ROIs and resolve them to tiles
3. Extract every ROI (serially or on a worker pool)
4. Write one LAZ per ROI, optional metrics JSON and overview plot

Usage:
    trees-roi-query --catalog /path/to/tiles --plots plots.csv --output-dir /path/to/rois
    trees-roi-query --catalog /path/to/tiles --x 100 250 --y 100 40 --r 25 --metrics-out metrics.json
"""

import argparse
import csv
import json
import math
import sys
from pathlib import Path
from typing import Dict, List, Optional

from .catalog import open_source
from .clip import StreamFilter
from .engine import catalog_queries
from .metrics import roi_metrics
from .parameters import load_params, print_params
from .queries import build_queries
from .reader import LasReader, write_point_set
from .scheduler import SchedulerConfig


def read_plots_csv(csv_path: Path) -> Dict[str, Optional[List]]:
    """
    Read ROI definitions from a CSV file.

    Required columns: x, y, r. Optional columns: r2, name.
    """
    with open(csv_path, newline='') as f:
        reader = csv.DictReader(f)
        fields = {name.strip().lower(): name for name in (reader.fieldnames or [])}
        missing = [col for col in ('x', 'y', 'r') if col not in fields]
        if missing:
            raise ValueError(f"{csv_path}: missing column(s) {', '.join(missing)}")
        rows = list(reader)

    plots = {
        'x': [float(row[fields['x']]) for row in rows],
        'y': [float(row[fields['y']]) for row in rows],
        'r': [float(row[fields['r']]) for row in rows],
        'r2': None,
        'names': None,
    }
    if 'r2' in fields:
        plots['r2'] = [float(row[fields['r2']]) for row in rows]
    if 'name' in fields:
        plots['names'] = [row[fields['name']] for row in rows]
    return plots


def _json_safe(value):
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Extract regions of interest from a tiled point cloud catalog",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--catalog", type=Path, required=True,
                        help="Directory of LAS/LAZ tiles, tindex (.gpkg/.shp) or single file")
    parser.add_argument("--plots", type=Path, help="CSV with columns x, y, r[, r2][, name]")
    parser.add_argument("--x", type=float, nargs="+", help="ROI centre x coordinates")
    parser.add_argument("--y", type=float, nargs="+", help="ROI centre y coordinates")
    parser.add_argument("--r", type=float, nargs="+", help="ROI radius (one value or one per ROI)")
    parser.add_argument("--r2", type=float, nargs="+", help="Rectangle half-height (turns ROIs into rectangles)")
    parser.add_argument("--names", nargs="+", help="ROI names")
    parser.add_argument("--filter", default="", help="Reader filter, e.g. '-keep_class 2 5 -drop_withheld'")
    parser.add_argument("--output-dir", type=Path, help="Write one LAZ file per ROI here")
    parser.add_argument("--metrics-out", type=Path, help="Write per-ROI metrics JSON here")
    parser.add_argument("--plot", type=Path, help="Write an overview PNG of tiles and ROIs here")
    parser.add_argument("--workers", type=int, help="Number of parallel workers")
    parser.add_argument("--serial", action="store_true", help="Force serial extraction")
    parser.add_argument("--progress", action="store_true", help="Print progress per completed ROI")
    parser.add_argument("--config", type=Path, help="Custom config file defining QUERY_PARAMS")
    parser.add_argument("--param", action="append", help="Parameter override (param=value)")
    parser.add_argument("--show-params", action="store_true", help="Print parameters and exit")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    params = load_params(config_file=args.config, param_overrides=args.param)

    if args.show_params:
        print_params(params)
        return 0

    if args.plots:
        plots = read_plots_csv(args.plots)
    elif args.x is not None and args.y is not None and args.r is not None:
        plots = {'x': args.x, 'y': args.y, 'r': args.r, 'r2': args.r2, 'names': args.names}
    else:
        print("Error: either --plots or --x/--y/--r is required")
        return 1

    overrides = {}
    if args.workers:
        overrides['workers'] = args.workers
    if args.serial:
        overrides['force_serial'] = True
    if args.progress:
        overrides['progress'] = True
    config = SchedulerConfig.from_params(params, **overrides)

    print("=" * 60)
    print("Running ROI Query Task")
    print("=" * 60)
    print(f"Catalog: {args.catalog}")
    print(f"ROIs: {len(plots['x'])} ({'rectangles' if plots['r2'] is not None else 'discs'})")
    print(f"Workers: {1 if config.force_serial else config.pool_size} ({config.executor})")
    if args.filter:
        print(f"Filter: {args.filter}")
    print()

    stream_filter = StreamFilter.parse(args.filter) if args.filter else None
    source = open_source(
        args.catalog,
        pattern=params.get('pattern', '*.la[sz]'),
        index_threshold=params.get('index_threshold', 256),
        verbose=config.verbose,
    )
    print(f"  ✓ {len(source.tiles)} tiles, extent {tuple(round(v, 2) for v in source.extent)}")

    output = catalog_queries(
        source,
        plots['x'],
        plots['y'],
        plots['r'],
        plots['r2'],
        names=plots['names'],
        config=config,
        reader=LasReader(chunk_size=params.get('chunk_size', 1_000_000)),
        stream_filter=stream_filter,
    )

    if args.output_dir:
        for result in output:
            out_file = write_point_set(result.points, args.output_dir / f"{result.name}.laz", crs=source.crs)
            print(f"  ✓ {result.name}: {len(result):,} points -> {out_file.name}")

    if args.metrics_out:
        metrics = roi_metrics(output)
        args.metrics_out.parent.mkdir(parents=True, exist_ok=True)
        with args.metrics_out.open('w') as f:
            json.dump(
                {name: {k: _json_safe(v) for k, v in values.items()} for name, values in metrics.items()},
                f,
                indent=2,
            )
        print(f"  ✓ Metrics written to {args.metrics_out}")

    if args.plot:
        from .plot_catalog_queries import plot_catalog_queries
        queries = build_queries(plots['x'], plots['y'], plots['r'], plots['r2'], plots['names'])
        plot_catalog_queries(source, queries, args.plot, unresolved=output.unresolved, errors=list(output.errors()))

    errors = output.errors()
    print()
    print("=" * 60)
    print("ROI Query Complete")
    print("=" * 60)
    print(f"Extracted: {len(output)}")
    print(f"Outside catalog: {len(output.unresolved)}")
    if output.cancelled:
        print(f"Cancelled (timeout): {len(output.cancelled)}")
    print(f"With read errors: {len(errors)}")
    for name, tile_errors in errors.items():
        for error in tile_errors:
            print(f"  ✗ {name}: {error}")

    return 0


def cli():
    try:
        sys.exit(main())
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    cli()
