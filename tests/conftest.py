"""Pytest configuration and fixtures for ROI query tests."""

import os
from pathlib import Path

import numpy as np
import pytest

from trees_roi_query.catalog import Catalog, Tile
from trees_roi_query.reader import PointSet, write_point_set


os.environ.setdefault("MPLBACKEND", "Agg")

TILE_SIZE = 100
# Quarter-unit scale keeps integer coordinates exact after the LAS round trip
EXACT_SCALE = 0.25


def make_tile_points(col: int, row: int, tile_size: int = TILE_SIZE, spacing: float = 1.0) -> PointSet:
    """
    Regular point grid covering [x0, x0 + size) x [y0, y0 + size) of one tile.

    point_source_id holds the tile number (row-major) so tests can tell which
    file a point came from.
    """
    x0 = col * tile_size
    y0 = row * tile_size
    xs, ys = np.meshgrid(np.arange(x0, x0 + tile_size, spacing), np.arange(y0, y0 + tile_size, spacing))
    xs = xs.ravel()
    ys = ys.ravel()
    n = len(xs)
    z = (xs + ys) % 20
    classification = np.where(z < 2, 2, 5).astype(np.uint8)
    return PointSet.from_xyz(
        xs,
        ys,
        z,
        intensity=np.full(n, 100 + col * 10 + row, dtype=np.uint16),
        classification=classification,
        return_number=np.ones(n, dtype=np.uint8),
        number_of_returns=np.ones(n, dtype=np.uint8),
        point_source_id=np.full(n, row * 2 + col, dtype=np.uint16),
    )


def write_grid_catalog(directory: Path, cols: int = 2, rows: int = 2) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    for col in range(cols):
        for row in range(rows):
            write_point_set(
                make_tile_points(col, row),
                directory / f"tile_c{col:02d}_r{row:02d}.las",
                scale=EXACT_SCALE,
            )
    return directory


@pytest.fixture(scope="session")
def grid_dir(tmp_path_factory) -> Path:
    """2x2 grid of 100x100 tiles covering (0, 0)-(200, 200), 1 point per unit."""
    return write_grid_catalog(tmp_path_factory.mktemp("grid"))


@pytest.fixture(scope="session")
def grid_catalog(grid_dir) -> Catalog:
    return Catalog.from_directory(grid_dir)


@pytest.fixture
def box_tiles():
    """Four tiles on a 2x2 grid with nominal 100 unit cells (no files behind them)."""
    return [
        Tile("t00.las", 0, 0, 100, 100),
        Tile("t10.las", 100, 0, 200, 100),
        Tile("t01.las", 0, 100, 100, 200),
        Tile("t11.las", 100, 100, 200, 200),
    ]


@pytest.fixture
def sample_params():
    """Sample parameter dictionary for scheduler tests."""
    return {
        "workers": 3,
        "serial_threshold": 2,
        "executor": "thread",
        "timeout": None,
        "progress": False,
        "verbose": False,
    }
