"""Tests for single-ROI extraction and the LAS reader."""

import laspy
import numpy as np
import pytest

from trees_roi_query import reader as reader_module
from trees_roi_query.catalog import Catalog, Tile
from trees_roi_query.clip import ClipPredicate, StreamFilter
from trees_roi_query.errors import TileReadError
from trees_roi_query.extractor import ResultStatus, extract
from trees_roi_query.queries import build_queries, resolve_queries
from trees_roi_query.reader import LasReader, PointSet, write_point_set
from trees_roi_query.shapes import Query, ResolvedQuery


def _resolve_one(catalog, x, y, r, r2=None, name="ROI1"):
    resolved, _ = resolve_queries(build_queries([x], [y], r, r2, [name]), catalog)
    return resolved[0]


class TestLasReader:
    def test_reads_only_points_inside(self, grid_dir):
        reader = LasReader(chunk_size=1_000)
        points = reader.read(grid_dir / "tile_c00_r00.las", ClipPredicate(10, 10, 2))
        assert len(points) == 13  # lattice points within distance 2
        assert np.all((points.x - 10) ** 2 + (points.y - 10) ** 2 <= 4)

    def test_keeps_all_dimensions(self, grid_dir):
        points = LasReader().read(grid_dir / "tile_c00_r00.las", ClipPredicate(10, 10, 1))
        for dim in ("x", "y", "z", "intensity", "classification", "point_source_id"):
            assert dim in points
        assert "X" not in points

    def test_stream_filter(self, grid_dir):
        ground = LasReader().read(
            grid_dir / "tile_c00_r00.las", ClipPredicate(50, 50, 10), StreamFilter(keep_classes=(2,))
        )
        assert len(ground) > 0
        assert np.all(ground["classification"] == 2)

    def test_nothing_inside(self, grid_dir):
        points = LasReader().read(grid_dir / "tile_c00_r00.las", ClipPredicate(150, 150, 5))
        assert len(points) == 0

    def test_write_roundtrip_keeps_extra_dims(self, tmp_path):
        points = PointSet.from_xyz([1, 2, 3, 4], [1, 2, 3, 4], [0, 1, 2, 3], treeID=np.array([1, 1, 2, 2], dtype=np.int32))
        path = write_point_set(points, tmp_path / "roi.las", scale=0.25)
        back = LasReader().read(path, ClipPredicate(2.5, 2.5, 10))
        assert len(back) == 4
        assert back["treeID"].tolist() == [1, 1, 2, 2]


class TestCopcReader:
    @pytest.fixture
    def copc_queries(self, grid_dir, monkeypatch):
        """Serve *.copc.laz paths from a grid tile through a bounds-only spatial query."""
        queries = []

        class GridCopcReader:
            def __init__(self, las):
                self.las = las

            @classmethod
            def open(cls, path):
                return cls(laspy.read(grid_dir / "tile_c00_r00.las"))

            def __enter__(self):
                return self

            def __exit__(self, *exc):
                return False

            def query(self, bounds):
                queries.append(bounds)
                x = np.asarray(self.las.x)
                y = np.asarray(self.las.y)
                inside = (
                    (x >= bounds.mins[0]) & (x <= bounds.maxs[0])
                    & (y >= bounds.mins[1]) & (y <= bounds.maxs[1])
                )
                return self.las.points[inside]

        monkeypatch.setattr(reader_module, "CopcReader", GridCopcReader)
        return queries

    def test_spatial_query_then_exact_clip(self, copc_queries):
        points = LasReader().read("tile_c00_r00.copc.laz", ClipPredicate(10, 10, 2))
        assert len(points) == 13
        assert np.all((points.x - 10) ** 2 + (points.y - 10) ** 2 <= 4)

        (bounds,) = copc_queries
        assert bounds.mins[0] < 8 and bounds.maxs[0] > 12
        assert bounds.mins[1] < 8 and bounds.maxs[1] > 12

    def test_rectangle_edges_survive_query(self, copc_queries):
        points = LasReader().read("tile_c00_r00.COPC.LAZ", ClipPredicate(10, 10, 2, 1))
        assert len(points) == 15

    def test_stream_filter(self, copc_queries):
        points = LasReader().read(
            "tile_c00_r00.copc.laz", ClipPredicate(50, 50, 10), StreamFilter(keep_classes=(2,))
        )
        assert len(points) > 0
        assert np.all(points["classification"] == 2)

    def test_plain_laz_path_does_not_use_copc(self, copc_queries, grid_dir):
        LasReader().read(grid_dir / "tile_c00_r00.las", ClipPredicate(10, 10, 2))
        assert copc_queries == []


class TestExtract:
    def test_single_tile(self, grid_catalog):
        result = extract(_resolve_one(grid_catalog, 10, 10, 5))
        assert result.name == "ROI1"
        assert result.status is ResultStatus.RESOLVED
        assert len(result.tiles) == 1
        assert set(result.points["point_source_id"].tolist()) == {0}

    def test_corner_spanning_four_tiles(self, grid_catalog):
        result = extract(_resolve_one(grid_catalog, 100, 100, 5))
        assert len(result.tiles) == 4
        assert set(result.points["point_source_id"].tolist()) == {0, 1, 2, 3}
        d2 = (result.points.x - 100) ** 2 + (result.points.y - 100) ** 2
        assert np.all(d2 <= 25)
        # Every lattice point of the disc, each read exactly once
        assert len(result.points) == 81

    def test_point_on_shared_edge(self, grid_catalog):
        # (100, 50) lies on the edge between the two lower tiles
        result = extract(_resolve_one(grid_catalog, 100, 50, 0.5))
        coords = set(zip(result.points.x.tolist(), result.points.y.tolist()))
        assert (100.0, 50.0) in coords

    def test_rectangle(self, grid_catalog):
        result = extract(_resolve_one(grid_catalog, 100, 100, 2, 1))
        assert len(result.points) == 5 * 3
        assert result.points.x.min() == 98 and result.points.x.max() == 102
        assert result.points.y.min() == 99 and result.points.y.max() == 101

    def test_missing_tile_gives_partial_result(self, grid_catalog, tmp_path):
        tiles = list(grid_catalog.tiles[:1]) + [Tile(str(tmp_path / "missing.las"), 0, 0, 100, 100)]
        resolved = ResolvedQuery(Query("ROI1", 10, 10, 2), tuple(tiles))
        result = extract(resolved)

        assert result.status is ResultStatus.PARTIAL_ERROR
        assert not result.ok
        assert len(result.points) == 13
        assert len(result.errors) == 1
        assert isinstance(result.errors[0], TileReadError)
        assert result.errors[0].path.endswith("missing.las")

    def test_corrupt_tile(self, grid_catalog, tmp_path):
        bad = tmp_path / "bad.las"
        bad.write_bytes(b"garbage")
        resolved = ResolvedQuery(Query("ROI1", 10, 10, 2), (Tile(str(bad), 0, 0, 100, 100),) + grid_catalog.tiles[:1])
        result = extract(resolved)
        assert len(result.errors) == 1
        assert len(result.points) == 13
