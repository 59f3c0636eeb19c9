"""
Point cloud reading for ROI extraction.

LasReader streams a tile with laspy's chunk iterator and applies the clip
predicate to every chunk, so points outside the ROI are discarded as they are
decoded and never accumulate. COPC tiles are first narrowed with a spatial
query on the predicate's bounding box.

Extracted points are held in a PointSet: one numpy array per dimension.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import laspy
from laspy.copc import Bounds, CopcReader
import numpy as np
from pyproj import CRS

from .clip import ClipPredicate, StreamFilter


# Raw integer coordinates are replaced by the scaled x/y/z columns
_RAW_COORDS = ("X", "Y", "Z")


@dataclass
class PointSet:
    """Columnar point buffer (x, y, z and any other dimension)."""

    columns: Dict[str, np.ndarray] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "PointSet":
        return cls({dim: np.empty(0, dtype=np.float64) for dim in ("x", "y", "z")})

    @classmethod
    def from_xyz(cls, x, y, z, **extra) -> "PointSet":
        columns = {
            "x": np.asarray(x, dtype=np.float64),
            "y": np.asarray(y, dtype=np.float64),
            "z": np.asarray(z, dtype=np.float64),
        }
        for name, values in extra.items():
            columns[name] = np.asarray(values)
        return cls(columns)

    @classmethod
    def concatenate(cls, parts: Sequence["PointSet"]) -> "PointSet":
        """Concatenate in order, keeping the dimensions common to all non-empty parts."""
        parts = [p for p in parts if p is not None]
        if not parts:
            return cls.empty()
        if any(len(p) for p in parts):
            parts = [p for p in parts if len(p)]
        if len(parts) == 1:
            return parts[0]
        common = [dim for dim in parts[0].columns if all(dim in p.columns for p in parts[1:])]
        return cls({dim: np.concatenate([p.columns[dim] for p in parts]) for dim in common})

    def __len__(self) -> int:
        if "x" not in self.columns:
            return 0
        return len(self.columns["x"])

    def __getitem__(self, dim: str) -> np.ndarray:
        return self.columns[dim]

    def __contains__(self, dim: str) -> bool:
        return dim in self.columns

    @property
    def x(self) -> np.ndarray:
        return self.columns["x"]

    @property
    def y(self) -> np.ndarray:
        return self.columns["y"]

    @property
    def z(self) -> np.ndarray:
        return self.columns["z"]

    @property
    def dimensions(self) -> List[str]:
        return list(self.columns)

    def xyz(self) -> np.ndarray:
        """Nx3 array of coordinates."""
        return np.column_stack((self.x, self.y, self.z))


def _record_columns(record, mask: Optional[np.ndarray] = None) -> Dict[str, np.ndarray]:
    """Convert a laspy (ScaleAware)PointRecord to columns, optionally masked."""
    columns = {
        "x": np.asarray(record.x, dtype=np.float64),
        "y": np.asarray(record.y, dtype=np.float64),
        "z": np.asarray(record.z, dtype=np.float64),
    }
    for dim in record.point_format.dimension_names:
        if dim in _RAW_COORDS:
            continue
        columns[dim] = np.asarray(record[dim])
    if mask is not None:
        columns = {dim: values[mask] for dim, values in columns.items()}
    return columns


def _select(record, predicate: ClipPredicate, stream_filter: Optional[StreamFilter]) -> Optional[Dict[str, np.ndarray]]:
    n = len(record)
    if n == 0:
        return None
    keep = predicate.includes(np.asarray(record.x), np.asarray(record.y))
    if stream_filter is not None and not stream_filter.is_noop and keep.any():
        attrs = {}
        if "classification" in record.point_format.dimension_names:
            attrs["classification"] = np.asarray(record["classification"])
        if "withheld" in record.point_format.dimension_names:
            attrs["withheld"] = np.asarray(record["withheld"])
        keep &= stream_filter.mask(attrs, n)
    if not keep.any():
        return None
    return _record_columns(record, keep)


class LasReader:
    """
    Reads the points of one tile that satisfy a clip predicate.

    Args:
        chunk_size: Number of points decoded per chunk (default 1M)
    """

    def __init__(self, chunk_size: int = 1_000_000):
        self.chunk_size = chunk_size

    def read(
        self,
        path: Union[str, Path],
        predicate: ClipPredicate,
        stream_filter: Optional[StreamFilter] = None,
    ) -> PointSet:
        path = str(path)
        if path.lower().endswith(".copc.laz"):
            return self._read_copc(path, predicate, stream_filter)

        parts = []
        with laspy.open(path) as f:
            for chunk in f.chunk_iterator(self.chunk_size):
                columns = _select(chunk, predicate, stream_filter)
                if columns is not None:
                    parts.append(PointSet(columns))

        if not parts:
            return PointSet.empty()
        return PointSet.concatenate(parts)

    def _read_copc(self, path: str, predicate: ClipPredicate, stream_filter: Optional[StreamFilter]) -> PointSet:
        xmin, ymin, xmax, ymax = predicate.bbox
        # Pad by a millimetre so points on the bbox edge survive the node query
        pad = 1e-3
        bounds = Bounds(
            mins=np.array([xmin - pad, ymin - pad]),
            maxs=np.array([xmax + pad, ymax + pad]),
        )
        with CopcReader.open(path) as reader:
            record = reader.query(bounds=bounds)

        columns = _select(record, predicate, stream_filter)
        if columns is None:
            return PointSet.empty()
        return PointSet(columns)


def write_point_set(points: PointSet, path: Union[str, Path], scale: float = 0.001, crs=None) -> Path:
    """
    Write a PointSet to LAS/LAZ (point format 6, LAS 1.4).

    Columns that are not standard dimensions of the point format are written as
    extra bytes.
    """
    path = Path(path)
    header = laspy.LasHeader(point_format=6, version="1.4")
    header.scales = np.array([scale, scale, scale])
    if len(points):
        header.offsets = np.floor(np.array([points.x.min(), points.y.min(), points.z.min()]))
    if crs is not None:
        header.add_crs(CRS.from_user_input(crs))

    standard = set(header.point_format.dimension_names)
    extra = []
    for dim, values in points.columns.items():
        if dim in ("x", "y", "z") or dim in standard:
            continue
        dtype = np.uint8 if values.dtype == bool else values.dtype
        extra.append(laspy.ExtraBytesParams(name=dim, type=dtype))
    if extra:
        header.add_extra_dims(extra)

    las = laspy.LasData(header)
    las.x = points.x
    las.y = points.y
    las.z = points.z
    for dim, values in points.columns.items():
        if dim in ("x", "y", "z"):
            continue
        if dim in standard:
            las[dim] = values
        else:
            las[dim] = values.astype(np.uint8) if values.dtype == bool else values

    path.parent.mkdir(parents=True, exist_ok=True)
    las.write(str(path))
    return path
