"""
Static spatial index over tile bounding boxes.

Resolves a query shape to the tiles whose bounding box overlaps the shape's
bounding box. This is a broad-phase test: a tile touched only by the corner of
a disc's bbox is returned even if the disc itself misses it, the clip predicate
removes such points later. Touching edges count as overlap so a point lying on
a shared tile boundary is never lost.
"""

from __future__ import annotations

from typing import List, Sequence

import numpy as np
from shapely import STRtree, box

from .shapes import BBox, Shape


class TileIndex:
    """
    Read-only index over a sequence of tiles.

    Small catalogs are scanned with a vectorised numpy box test. Catalogs with
    more than `index_threshold` tiles use a shapely STRtree. Both paths return
    the same tiles in catalog order.
    """

    def __init__(self, tiles: Sequence, index_threshold: int = 256):
        self.tiles = tuple(tiles)
        self.index_threshold = index_threshold

        if self.tiles:
            self._bounds = np.array([t.bounds for t in self.tiles], dtype=np.float64)
        else:
            self._bounds = np.empty((0, 4), dtype=np.float64)

        self._tree = None
        if len(self.tiles) > index_threshold:
            self._tree = STRtree([box(*b) for b in self._bounds])

    def __len__(self) -> int:
        return len(self.tiles)

    @property
    def uses_tree(self) -> bool:
        return self._tree is not None

    def candidates(self, bbox: BBox) -> np.ndarray:
        """Indices (sorted) of tiles whose bounds overlap `bbox`."""
        if not self.tiles:
            return np.empty(0, dtype=np.intp)

        if self._tree is not None:
            hits = self._tree.query(box(*bbox), predicate="intersects")
            return np.sort(np.asarray(hits, dtype=np.intp))

        xmin, ymin, xmax, ymax = bbox
        b = self._bounds
        mask = (b[:, 0] <= xmax) & (b[:, 2] >= xmin) & (b[:, 1] <= ymax) & (b[:, 3] >= ymin)
        return np.flatnonzero(mask)

    def intersecting(self, shape: Shape) -> List:
        """Tiles overlapping the shape's bounding box, in catalog order."""
        return [self.tiles[i] for i in self.candidates(shape.bbox)]
