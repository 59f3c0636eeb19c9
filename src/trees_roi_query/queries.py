"""
Query building and resolution.

Turns the caller's parallel arrays (x, y, r, optional r2, optional names) into
Query records, then resolves each one against the catalog. Queries touching
no tile are dropped: they are reported, not raised.
"""

from __future__ import annotations

import sys
from collections import Counter
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .errors import InvalidArgument
from .shapes import Query, ResolvedQuery


def _as_vector(values, argument: str) -> np.ndarray:
    try:
        arr = np.atleast_1d(np.asarray(values, dtype=np.float64))
    except (TypeError, ValueError) as e:
        raise InvalidArgument(argument, f"expected numbers, got {values!r}") from e
    if arr.ndim != 1:
        raise InvalidArgument(argument, f"expected a scalar or a 1-D sequence, got shape {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise InvalidArgument(argument, "contains infinity or NaN")
    return arr


def _broadcast_radius(values, n: int, argument: str) -> np.ndarray:
    arr = _as_vector(values, argument)
    if len(arr) > 1 and len(arr) != n:
        raise InvalidArgument(argument, f"is not same length as x ({len(arr)} != {n})")
    if np.any(arr <= 0):
        raise InvalidArgument(argument, "radii must be strictly positive")
    if len(arr) == 1:
        arr = np.full(n, arr[0])
    return arr


def build_queries(
    x,
    y,
    r,
    r2=None,
    names: Optional[Sequence[str]] = None,
) -> List[Query]:
    """
    Validate and normalise ROI definitions into Query records.

    Args:
        x, y: Centre coordinates, one per ROI
        r: Radius (disc) or half-width (rectangle); scalar or one per ROI
        r2: Optional half-height; when given every ROI is a rectangle
        names: Optional ROI names; defaults to ROI1, ROI2, ...

    Returns:
        Queries in input order

    Raises:
        InvalidArgument: naming the offending argument
    """
    xs = _as_vector(x, "x")
    ys = _as_vector(y, "y")
    if len(xs) != len(ys):
        raise InvalidArgument("y", f"is not same length as x ({len(ys)} != {len(xs)})")

    n = len(xs)
    if n == 0:
        return []

    rs = _broadcast_radius(r, n, "r")
    r2s = _broadcast_radius(r2, n, "r2") if r2 is not None else None

    if names is None:
        names = [f"ROI{i}" for i in range(1, n + 1)]
    else:
        names = [str(name) for name in names]
        if len(names) != n:
            raise InvalidArgument("names", f"is not same length as x ({len(names)} != {n})")

        duplicates = sorted(name for name, count in Counter(names).items() if count > 1)
        if duplicates:
            raise InvalidArgument("names", f"must be unique, duplicated: {duplicates}")

    return [
        Query(
            name=names[i],
            x=float(xs[i]),
            y=float(ys[i]),
            r=float(rs[i]),
            r2=float(r2s[i]) if r2s is not None else None,
        )
        for i in range(n)
    ]


def resolve_queries(
    queries: Sequence[Query],
    source,
    verbose: bool = False,
) -> Tuple[List[ResolvedQuery], List[str]]:
    """
    Pair every query with the tiles it intersects.

    Returns:
        Tuple of (resolved queries in input order, names of dropped queries)
    """
    resolved = []
    dropped = []
    for query in queries:
        tiles = source.intersecting(query.shape)
        if not tiles:
            dropped.append(query.name)
            continue
        resolved.append(ResolvedQuery(query=query, tiles=tuple(tiles)))

    if dropped:
        print(
            f"[queries] {len(dropped)} ROI(s) outside the catalog extent, skipped: {', '.join(dropped)}",
            file=sys.stderr,
            flush=True,
        )
    if verbose:
        n_tiles = sum(len(rq.tiles) for rq in resolved)
        print(f"[queries] {len(resolved)} ROI(s) resolved to {n_tiles} tile reads", file=sys.stderr, flush=True)

    return resolved, dropped
