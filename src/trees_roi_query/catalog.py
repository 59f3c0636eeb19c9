#!/usr/bin/env python3
"""
Catalog of point cloud tiles.

A catalog is the ordered set of LAS/LAZ/COPC tiles of one acquisition, arranged
on a regular grid, together with their header bounding boxes. It can be built
from a directory listing (headers are read with laspy, no points are loaded),
from a PDAL tile index (GeoPackage or shapefile, read with fiona), or from an
explicit list of tiles.

A single file is exposed through the same interface (LasFile), so the query
engine never needs to know which of the two it has been handed.

Usage:
    python -m trees_roi_query.catalog /path/to/tiles
    python -m trees_roi_query.catalog /path/to/tindex.gpkg --tiles
"""

from __future__ import annotations

import argparse
import json
import math
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple, Union

import fiona
import laspy
from pyproj import CRS

from .errors import CatalogError
from .shapes import BBox, Shape
from .tile_index import TileIndex


@dataclass(frozen=True)
class Tile:
    """One file of the catalog and its XY bounding box."""

    path: str
    xmin: float
    ymin: float
    xmax: float
    ymax: float
    point_count: int = 0
    crs: Optional[str] = None

    @property
    def bounds(self) -> BBox:
        return (self.xmin, self.ymin, self.xmax, self.ymax)

    @property
    def name(self) -> str:
        return Path(self.path).name


def _crs_string(crs) -> Optional[str]:
    """Normalise a CRS-like value to a comparable string, None when unknown."""
    if crs is None:
        return None
    try:
        parsed = CRS.from_user_input(crs)
    except Exception:
        return str(crs)
    authority = parsed.to_authority()
    if authority is not None:
        return f"{authority[0]}:{authority[1]}"
    return parsed.to_string()


def read_tile_header(path: Union[str, Path]) -> Tile:
    """
    Build a Tile from a LAS/LAZ header (without loading points).

    Raises:
        CatalogError: if the header cannot be read
    """
    path = Path(path)
    try:
        with laspy.open(str(path)) as las:
            header = las.header
            try:
                crs = _crs_string(header.parse_crs())
            except Exception:
                crs = None
            return Tile(
                path=str(path),
                xmin=float(header.x_min),
                ymin=float(header.y_min),
                xmax=float(header.x_max),
                ymax=float(header.y_max),
                point_count=int(header.point_count),
                crs=crs,
            )
    except Exception as e:
        raise CatalogError(f"Could not read header of {path}: {e}") from e


class PointSource:
    """
    Common capability set of a queryable dataset.

    Subclasses provide the ordered `tiles`; resolution of a shape to tiles is
    shared through a TileIndex built once at construction.
    """

    tiles: Tuple[Tile, ...]
    crs: Optional[str]
    index: TileIndex

    def __len__(self) -> int:
        return len(self.tiles)

    def __iter__(self) -> Iterator[Tile]:
        return iter(self.tiles)

    def intersecting(self, shape: Shape) -> List[Tile]:
        """Tiles whose bounding box overlaps the shape's bounding box."""
        return self.index.intersecting(shape)

    @property
    def extent(self) -> BBox:
        return (
            min(t.xmin for t in self.tiles),
            min(t.ymin for t in self.tiles),
            max(t.xmax for t in self.tiles),
            max(t.ymax for t in self.tiles),
        )

    @property
    def point_count(self) -> int:
        return sum(t.point_count for t in self.tiles)

    def summary(self) -> dict:
        xmin, ymin, xmax, ymax = self.extent
        return {
            "type": type(self).__name__,
            "tile_count": len(self.tiles),
            "point_count": self.point_count,
            "crs": self.crs,
            "extent": {"minx": xmin, "miny": ymin, "maxx": xmax, "maxy": ymax},
        }


class Catalog(PointSource):
    """
    Ordered, read-only collection of tiles treated as one logical dataset.

    Raises:
        CatalogError: on an empty tile list, non-finite or inverted bounds, or
            tiles declaring different CRSs.
    """

    def __init__(self, tiles: Sequence[Tile], crs: Optional[str] = None, index_threshold: int = 256):
        tiles = tuple(tiles)
        if not tiles:
            raise CatalogError("Catalog contains no tiles")

        for tile in tiles:
            if not all(math.isfinite(v) for v in tile.bounds):
                raise CatalogError(f"Invalid bounds (infinity or NaN) for {tile.path}: {tile.bounds}")
            if tile.xmin > tile.xmax or tile.ymin > tile.ymax:
                raise CatalogError(f"Inverted bounds for {tile.path}: {tile.bounds}")

        declared = {t.crs for t in tiles if t.crs is not None}
        if crs is not None:
            declared.add(_crs_string(crs))
        if len(declared) > 1:
            raise CatalogError(f"Tiles declare different CRSs: {sorted(declared)}")

        self.tiles = tiles
        self.crs = declared.pop() if declared else None
        self.index = TileIndex(tiles, index_threshold=index_threshold)

    def __repr__(self) -> str:
        return f"Catalog({len(self.tiles)} tiles, crs={self.crs})"

    @classmethod
    def from_tiles(cls, tiles: Sequence[Tile], **kwargs) -> "Catalog":
        return cls(tiles, **kwargs)

    @classmethod
    def from_directory(
        cls,
        directory: Union[str, Path],
        pattern: str = "*.la[sz]",
        index_threshold: int = 256,
        verbose: bool = False,
    ) -> "Catalog":
        """
        Build a catalog from every LAS/LAZ file in a directory.

        Files are sorted by name so the catalog order is stable across runs.
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise CatalogError(f"Catalog directory does not exist: {directory}")

        files = sorted(directory.glob(pattern))
        if not files:
            raise CatalogError(f"No LAS/LAZ files matching {pattern!r} found in {directory}")

        if verbose:
            print(f"[catalog] reading {len(files)} headers from {directory}", file=sys.stderr, flush=True)

        tiles = [read_tile_header(f) for f in files]
        return cls(tiles, index_threshold=index_threshold)

    @classmethod
    def from_tindex(
        cls,
        tindex_path: Union[str, Path],
        location_field: str = "Location",
        index_threshold: int = 256,
        verbose: bool = False,
    ) -> "Catalog":
        """
        Build a catalog from a PDAL tile index (pdal tindex create output).

        Each feature's polygon gives the tile bounds, `location_field` the file path.
        """
        tindex_path = Path(tindex_path)
        if not tindex_path.exists():
            raise CatalogError(f"Tile index not found: {tindex_path}")

        tiles = []
        with fiona.open(tindex_path) as src:
            crs = _crs_string(src.crs) if src.crs else None

            for feature in src:
                geom = feature['geometry']
                if geom['type'] == 'Polygon':
                    coords = geom['coordinates'][0]
                elif geom['type'] == 'MultiPolygon':
                    coords = [c for poly in geom['coordinates'] for c in poly[0]]
                else:
                    continue

                location = feature['properties'].get(location_field)
                if not location:
                    raise CatalogError(f"Feature without {location_field!r} in {tindex_path}")

                xs = [c[0] for c in coords]
                ys = [c[1] for c in coords]
                tiles.append(Tile(str(location), min(xs), min(ys), max(xs), max(ys), crs=crs))

        if verbose:
            print(f"[catalog] {len(tiles)} tiles in tindex {tindex_path.name}", file=sys.stderr, flush=True)

        return cls(tiles, index_threshold=index_threshold)


class LasFile(PointSource):
    """A single LAS/LAZ file exposed as a one-tile source."""

    def __init__(self, path: Union[str, Path, Tile]):
        tile = path if isinstance(path, Tile) else read_tile_header(path)
        self.tiles = (tile,)
        self.crs = tile.crs
        self.index = TileIndex(self.tiles)

    def __repr__(self) -> str:
        return f"LasFile({self.tiles[0].path})"


def open_source(source, pattern: str = "*.la[sz]", index_threshold: int = 256, verbose: bool = False) -> PointSource:
    """Coerce a path (directory, tindex or single file) or a PointSource into a PointSource."""
    if isinstance(source, PointSource):
        return source

    path = Path(source)
    if path.is_dir():
        return Catalog.from_directory(path, pattern=pattern, index_threshold=index_threshold, verbose=verbose)
    if path.suffix.lower() in (".gpkg", ".shp"):
        return Catalog.from_tindex(path, index_threshold=index_threshold, verbose=verbose)
    if path.suffix.lower() in (".las", ".laz"):
        return LasFile(path)
    raise CatalogError(f"Cannot build a catalog from {source!r}")


def main():
    parser = argparse.ArgumentParser(description="Summarise a point cloud catalog.")
    parser.add_argument("source", type=Path, help="Directory of LAS/LAZ tiles, tindex, or single file")
    parser.add_argument("--pattern", default="*.la[sz]", help="File pattern for directory catalogs")
    parser.add_argument("--tiles", action="store_true", help="Also list every tile")
    args = parser.parse_args()

    source = open_source(args.source, pattern=args.pattern, verbose=True)
    summary = source.summary()
    if args.tiles:
        summary["tiles"] = [
            {"path": t.path, "bounds": list(t.bounds), "point_count": t.point_count}
            for t in source.tiles
        ]
    print(json.dumps(summary, indent=2))


if __name__ == "__main__":
    try:
        main()
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
