"""Region-of-interest extraction from tiled point cloud catalogs."""

from .catalog import Catalog, LasFile, PointSource, Tile, open_source
from .clip import ClipPredicate, StreamFilter
from .collector import OutputCollection, ResultCollector
from .engine import catalog_queries
from .errors import CatalogError, InvalidArgument, TileReadError
from .extractor import QueryResult, ResultStatus, extract
from .queries import build_queries, resolve_queries
from .reader import LasReader, PointSet, write_point_set
from .scheduler import Scheduler, SchedulerConfig, console_progress
from .shapes import Circle, Query, Rectangle, ResolvedQuery
from .tile_index import TileIndex

__version__ = "0.1.0"
