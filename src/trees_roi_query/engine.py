"""
Batch extraction of regions of interest from a tiled point cloud catalog.

When a set of (x, y) coordinates corresponding to regions of interest (ROIs),
a field inventory for example, must be extracted from a catalog, catalog_queries
finds the tiles under each ROI, reads them with the ROI's clip applied and
stitches the parts, including ROIs that straddle the edges of two or more
tiles. It works for tiles arranged on a grid.

Example:
    catalog = Catalog.from_directory("/data/als_tiles")

    # 30 discs of 25 m radius
    plots = catalog_queries(catalog, X, Y, 25)

    # 30 squares of 50 x 50 m
    plots = catalog_queries(catalog, X, Y, 25, 25)
"""

from __future__ import annotations

import sys
from typing import Optional, Sequence

from .catalog import PointSource, open_source
from .clip import StreamFilter
from .collector import OutputCollection, ResultCollector
from .queries import build_queries, resolve_queries
from .reader import LasReader
from .scheduler import ProgressSink, Scheduler, SchedulerConfig


def catalog_queries(
    source,
    x,
    y,
    r,
    r2=None,
    names: Optional[Sequence[str]] = None,
    config: Optional[SchedulerConfig] = None,
    reader=None,
    stream_filter=None,
    progress: Optional[ProgressSink] = None,
) -> OutputCollection:
    """
    Extract the points of every ROI.

    Args:
        source: Catalog, LasFile, or a path (tile directory, tindex, single file)
        x, y: ROI centre coordinates
        r: Radius (scalar or one per ROI). With r2 = None the ROIs are discs.
        r2: Optional half-height (scalar or one per ROI). When given the ROIs
            are rectangles of half-width r and half-height r2 (squares if r == r2).
        names: ROI names (default ROI1, ROI2, ...)
        config: SchedulerConfig (parallelism, serial mode, timeout, progress)
        reader: Point reader with read(path, predicate, stream_filter)
            (default LasReader)
        stream_filter: StreamFilter or filter string ("-keep_class 2 -drop_withheld")
        progress: Optional advance(current, total) callback

    Returns:
        OutputCollection ordered like the input. ROIs outside every tile are
        absent (listed in `unresolved`); results with unreadable tiles carry
        their TileReadErrors.

    Raises:
        InvalidArgument: on mismatched or invalid inputs, before any file is read
        CatalogError: if the source cannot be turned into a valid catalog
    """
    config = config or SchedulerConfig()

    # Inputs are validated before the source is opened
    queries = build_queries(x, y, r, r2, names)
    input_names = [q.name for q in queries]
    if isinstance(stream_filter, str):
        stream_filter = StreamFilter.parse(stream_filter)

    if not isinstance(source, PointSource):
        source = open_source(source, verbose=config.verbose)

    if reader is None:
        reader = LasReader()

    if config.verbose:
        print("[engine] Indexing files...", file=sys.stderr, flush=True)
    resolved, unresolved = resolve_queries(queries, source, verbose=config.verbose)

    if config.verbose:
        print("[engine] Extracting data...", file=sys.stderr, flush=True)
    collector = ResultCollector()
    Scheduler(config, progress=progress).run(resolved, reader, stream_filter, collector=collector)

    cancelled = [rq.name for rq in resolved if rq.name not in collector]
    return OutputCollection(collector.ordered(input_names), unresolved=unresolved, cancelled=cancelled)
