"""Tests for catalog construction."""

import fiona
import pytest

from trees_roi_query import catalog_queries
from trees_roi_query.catalog import Catalog, LasFile, Tile, open_source, read_tile_header
from trees_roi_query.errors import CatalogError
from trees_roi_query.scheduler import SchedulerConfig
from trees_roi_query.shapes import Circle


class TestFromDirectory:
    def test_headers(self, grid_catalog):
        assert len(grid_catalog) == 4
        assert [t.name for t in grid_catalog] == [
            "tile_c00_r00.las",
            "tile_c00_r01.las",
            "tile_c01_r00.las",
            "tile_c01_r01.las",
        ]
        first = grid_catalog.tiles[0]
        assert first.bounds == (0.0, 0.0, 99.0, 99.0)
        assert first.point_count == 10_000

    def test_extent_and_summary(self, grid_catalog):
        assert grid_catalog.extent == (0.0, 0.0, 199.0, 199.0)
        summary = grid_catalog.summary()
        assert summary["tile_count"] == 4
        assert summary["point_count"] == 40_000
        assert summary["type"] == "Catalog"

    def test_missing_directory(self, tmp_path):
        with pytest.raises(CatalogError):
            Catalog.from_directory(tmp_path / "nope")

    def test_empty_directory(self, tmp_path):
        with pytest.raises(CatalogError):
            Catalog.from_directory(tmp_path)

    def test_corrupt_file(self, tmp_path):
        (tmp_path / "broken.las").write_bytes(b"not a las file")
        with pytest.raises(CatalogError):
            Catalog.from_directory(tmp_path)


class TestValidation:
    def test_empty_tile_list(self):
        with pytest.raises(CatalogError):
            Catalog([])

    def test_non_finite_bounds(self):
        with pytest.raises(CatalogError):
            Catalog([Tile("a.las", 0, 0, float("inf"), 10)])

    def test_inverted_bounds(self):
        with pytest.raises(CatalogError):
            Catalog([Tile("a.las", 10, 0, 0, 10)])

    def test_mixed_crs(self):
        tiles = [
            Tile("a.las", 0, 0, 10, 10, crs="EPSG:32632"),
            Tile("b.las", 10, 0, 20, 10, crs="EPSG:2056"),
        ]
        with pytest.raises(CatalogError):
            Catalog(tiles)

    def test_consistent_crs(self):
        tiles = [
            Tile("a.las", 0, 0, 10, 10, crs="EPSG:32632"),
            Tile("b.las", 10, 0, 20, 10),
        ]
        assert Catalog(tiles).crs == "EPSG:32632"


class TestSources:
    def test_las_file_is_single_tile_source(self, grid_dir):
        source = LasFile(grid_dir / "tile_c00_r00.las")
        assert len(source) == 1
        assert source.intersecting(Circle(50, 50, 5)) == list(source.tiles)
        assert source.intersecting(Circle(150, 150, 5)) == []

    def test_open_source(self, grid_dir, grid_catalog):
        assert isinstance(open_source(grid_dir), Catalog)
        assert isinstance(open_source(grid_dir / "tile_c01_r01.las"), LasFile)
        assert open_source(grid_catalog) is grid_catalog

    def test_open_source_rejects_unknown(self, tmp_path):
        other = tmp_path / "plots.csv"
        other.write_text("x,y,r\n")
        with pytest.raises(CatalogError):
            open_source(other)

    def test_read_tile_header(self, grid_dir):
        tile = read_tile_header(grid_dir / "tile_c01_r00.las")
        assert tile.bounds == (100.0, 0.0, 199.0, 99.0)
        assert tile.crs is None


def _write_tindex(path, tiles, crs="EPSG:32632", location_field="Location"):
    schema = {"geometry": "Polygon", "properties": {location_field: "str"}}
    with fiona.open(path, "w", driver="GPKG", schema=schema, crs=crs) as dst:
        for tile in tiles:
            xmin, ymin, xmax, ymax = tile.bounds
            ring = [(xmin, ymin), (xmax, ymin), (xmax, ymax), (xmin, ymax), (xmin, ymin)]
            dst.write({
                "geometry": {"type": "Polygon", "coordinates": [ring]},
                "properties": {location_field: tile.path},
            })
    return path


class TestFromTindex:
    def test_tiles_and_crs(self, grid_catalog, tmp_path):
        tindex = _write_tindex(tmp_path / "tindex.gpkg", grid_catalog.tiles)
        catalog = Catalog.from_tindex(tindex)
        assert len(catalog) == 4
        assert catalog.crs == "EPSG:32632"
        assert [t.path for t in catalog] == [t.path for t in grid_catalog]
        assert catalog.tiles[0].bounds == grid_catalog.tiles[0].bounds

    def test_query_through_tindex(self, grid_catalog, tmp_path):
        tindex = _write_tindex(tmp_path / "tindex.gpkg", grid_catalog.tiles)
        output = catalog_queries(tindex, [100], [100], 5, config=SchedulerConfig(force_serial=True))
        assert output.names() == ["ROI1"]
        assert len(output["ROI1"]) == 81
        assert output.errors() == {}

    def test_missing_location(self, grid_catalog, tmp_path):
        tindex = _write_tindex(tmp_path / "other.gpkg", grid_catalog.tiles, location_field="filename")
        with pytest.raises(CatalogError):
            Catalog.from_tindex(tindex)

    def test_missing_file(self, tmp_path):
        with pytest.raises(CatalogError):
            Catalog.from_tindex(tmp_path / "none.gpkg")


def test_from_tiles(box_tiles):
    catalog = Catalog.from_tiles(box_tiles, index_threshold=2)
    assert catalog.index.uses_tree
    assert [t.path for t in catalog.intersecting(Circle(100, 50, 1))] == ["t00.las", "t10.las"]
