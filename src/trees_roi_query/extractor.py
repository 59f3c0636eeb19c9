"""
Extraction of one ROI from the tiles it intersects.

Every tile of a resolved query is read with the query's clip predicate and the
parts are concatenated in tile order. A tile that cannot be read is recorded as
a TileReadError on the result; the other tiles are still read, so the caller
receives a partial result together with the error.

Points duplicated across adjacent tile files (the same return stored in both)
are not removed here: the result carries whatever the files contain.
"""

from __future__ import annotations

import enum
import sys
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .clip import ClipPredicate, StreamFilter
from .errors import TileReadError
from .reader import LasReader, PointSet
from .shapes import Query, ResolvedQuery


class ResultStatus(enum.Enum):
    RESOLVED = "resolved"
    PARTIAL_ERROR = "partial_error"


@dataclass
class QueryResult:
    """Points extracted for one ROI, plus any per-tile read failures."""

    name: str
    points: PointSet
    query: Optional[Query] = None
    tiles: Tuple[str, ...] = ()
    errors: List[TileReadError] = field(default_factory=list)

    @property
    def status(self) -> ResultStatus:
        return ResultStatus.PARTIAL_ERROR if self.errors else ResultStatus.RESOLVED

    @property
    def ok(self) -> bool:
        return not self.errors

    def __len__(self) -> int:
        return len(self.points)


def extract(
    resolved: ResolvedQuery,
    reader=None,
    stream_filter: Optional[StreamFilter] = None,
) -> QueryResult:
    """
    Read and merge the points of one resolved query.

    Args:
        resolved: Query and the tiles it intersects
        reader: Object with read(path, predicate, stream_filter) -> PointSet
            (default LasReader())
        stream_filter: Optional attribute filter applied during reading

    Returns:
        QueryResult tagged with the query's name
    """
    if reader is None:
        reader = LasReader()

    predicate = ClipPredicate.for_query(resolved.query)
    parts = []
    errors = []

    for tile in resolved.tiles:
        try:
            parts.append(reader.read(tile.path, predicate, stream_filter))
        except Exception as e:
            errors.append(TileReadError(tile.path, f"{type(e).__name__}: {e}"))

    for error in errors:
        print(f"  ✗ {resolved.name}: could not read {error}", file=sys.stderr, flush=True)

    return QueryResult(
        name=resolved.name,
        points=PointSet.concatenate(parts),
        query=resolved.query,
        tiles=tuple(t.path for t in resolved.tiles),
        errors=errors,
    )
