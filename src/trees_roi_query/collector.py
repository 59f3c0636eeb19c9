"""
Collection of per-ROI results and restoration of the caller's order.

Jobs complete in any order (and from any worker); the collector keys results
by ROI name and projects them back onto the original input names. Names that
were dropped (no intersecting tile) or never completed (cancelled) are absent
from the output.
"""

from __future__ import annotations

import collections.abc
import threading
from typing import Dict, Iterator, List, Optional, Sequence, Union

from .errors import TileReadError
from .extractor import QueryResult


class OutputCollection(collections.abc.Sequence):
    """
    Ordered sequence of QueryResult, in the caller's input order.

    Results are also addressable by ROI name. Names that produced no result are
    listed in `unresolved` (no intersecting tile) and `cancelled` (timed out).
    """

    def __init__(
        self,
        results: Sequence[QueryResult],
        unresolved: Sequence[str] = (),
        cancelled: Sequence[str] = (),
    ):
        self._results = list(results)
        self._by_name = {r.name: r for r in self._results}
        self.unresolved = list(unresolved)
        self.cancelled = list(cancelled)

    def __len__(self) -> int:
        return len(self._results)

    def __getitem__(self, key: Union[int, slice, str]):
        if isinstance(key, str):
            return self._by_name[key]
        return self._results[key]

    def __iter__(self) -> Iterator[QueryResult]:
        return iter(self._results)

    def __contains__(self, item) -> bool:
        if isinstance(item, str):
            return item in self._by_name
        return item in self._results

    def __repr__(self) -> str:
        return (
            f"OutputCollection({len(self._results)} results, "
            f"{len(self.unresolved)} unresolved, {len(self.cancelled)} cancelled)"
        )

    def get(self, name: str, default=None) -> Optional[QueryResult]:
        return self._by_name.get(name, default)

    def names(self) -> List[str]:
        return [r.name for r in self._results]

    def errors(self) -> Dict[str, List[TileReadError]]:
        """ROI name -> tile read errors, for results that have any."""
        return {r.name: list(r.errors) for r in self._results if r.errors}


class ResultCollector:
    """Thread-safe name -> result mapping filled as jobs complete."""

    def __init__(self):
        self._lock = threading.Lock()
        self._results: Dict[str, QueryResult] = {}

    def add(self, result: QueryResult) -> None:
        with self._lock:
            if result.name in self._results:
                raise KeyError(f"Duplicate result for ROI {result.name!r}")
            self._results[result.name] = result

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._results

    def snapshot(self) -> Dict[str, QueryResult]:
        with self._lock:
            return dict(self._results)

    def ordered(self, names: Sequence[str]) -> List[QueryResult]:
        """Results in the order of `names`, skipping names without a result."""
        results = self.snapshot()
        return [results[name] for name in names if name in results]


def collect(
    results: Union[Dict[str, QueryResult], Sequence[QueryResult]],
    names: Sequence[str],
    unresolved: Sequence[str] = (),
    cancelled: Sequence[str] = (),
) -> OutputCollection:
    """Order unordered results by the original input `names`."""
    collector = ResultCollector()
    values = results.values() if isinstance(results, dict) else results
    for result in values:
        collector.add(result)
    return OutputCollection(collector.ordered(names), unresolved=unresolved, cancelled=cancelled)
