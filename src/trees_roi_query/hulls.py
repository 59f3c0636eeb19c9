"""
Crown outlines of segmented trees inside an extracted ROI.

Points are grouped by a tree id dimension (treeID or PredInstance, 0 meaning
unassigned). Each group with at least 4 points becomes a polygon: convex hull
(scipy), concave hull (shapely) or bounding box.
"""

from typing import Dict, Optional

import numpy as np
from scipy.spatial import ConvexHull, QhullError
from shapely import MultiPoint, Polygon, box, concave_hull

from .reader import PointSet


MIN_POINTS = 4
HULL_TYPES = ("convex", "concave", "bbox")


def _instance_attribute(points: PointSet, attribute: Optional[str]) -> str:
    if attribute is not None:
        if attribute not in points:
            raise KeyError(f"No {attribute!r} dimension in point set")
        return attribute
    for candidate in ("treeID", "PredInstance"):
        if candidate in points:
            return candidate
    raise KeyError("No instance attribute found (expected treeID or PredInstance)")


def _convex(xy: np.ndarray) -> Optional[Polygon]:
    try:
        hull = ConvexHull(xy)
    except QhullError:
        # Collinear or duplicated points
        return None
    return Polygon(xy[hull.vertices])


def _concave(xy: np.ndarray, ratio: float) -> Optional[Polygon]:
    geom = concave_hull(MultiPoint(xy), ratio=ratio)
    if geom.geom_type != "Polygon" or geom.is_empty:
        return None
    return geom


def _bbox(xy: np.ndarray) -> Optional[Polygon]:
    xmin, ymin = xy.min(axis=0)
    xmax, ymax = xy.max(axis=0)
    if xmin == xmax or ymin == ymax:
        return None
    return box(xmin, ymin, xmax, ymax)


def tree_hulls(
    points: PointSet,
    kind: str = "convex",
    ratio: float = 0.3,
    attribute: Optional[str] = None,
) -> Dict[int, Polygon]:
    """
    Compute one polygon per tree.

    Args:
        points: Extracted points with a tree id dimension
        kind: "convex", "concave" or "bbox"
        ratio: Concave hull ratio (0 = most concave, 1 = convex hull)
        attribute: Tree id dimension (default treeID, then PredInstance)

    Returns:
        Dictionary tree id -> polygon, sorted by tree id. Trees with fewer than
        4 points or degenerate geometry are left out.
    """
    if kind not in HULL_TYPES:
        raise ValueError(f"kind must be one of {HULL_TYPES}, got {kind!r}")

    attribute = _instance_attribute(points, attribute)
    ids = np.asarray(points[attribute])
    xy = np.column_stack((points.x, points.y))

    hulls = {}
    for tree_id in np.unique(ids):
        if tree_id <= 0:
            continue
        tree_xy = xy[ids == tree_id]
        if len(tree_xy) < MIN_POINTS:
            continue

        if kind == "convex":
            poly = _convex(tree_xy)
        elif kind == "concave":
            poly = _concave(tree_xy, ratio)
        else:
            poly = _bbox(tree_xy)

        if poly is not None:
            hulls[int(tree_id)] = poly

    return hulls
