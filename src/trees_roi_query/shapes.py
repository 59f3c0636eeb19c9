"""
Query shapes and the Query / ResolvedQuery records.

A query with a single radius is a disc, a query with a second radius is an
axis-aligned rectangle with half-width r and half-height r2 (a square when
r == r2).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union


BBox = Tuple[float, float, float, float]  # xmin, ymin, xmax, ymax


@dataclass(frozen=True)
class Circle:
    x: float
    y: float
    r: float

    @property
    def bbox(self) -> BBox:
        return (self.x - self.r, self.y - self.r, self.x + self.r, self.y + self.r)


@dataclass(frozen=True)
class Rectangle:
    x: float
    y: float
    half_width: float
    half_height: float

    @property
    def bbox(self) -> BBox:
        return (
            self.x - self.half_width,
            self.y - self.half_height,
            self.x + self.half_width,
            self.y + self.half_height,
        )


Shape = Union[Circle, Rectangle]


@dataclass(frozen=True)
class Query:
    """One region of interest as requested by the caller."""

    name: str
    x: float
    y: float
    r: float
    r2: Optional[float] = None

    @property
    def shape(self) -> Shape:
        if self.r2 is None:
            return Circle(self.x, self.y, self.r)
        return Rectangle(self.x, self.y, self.r, self.r2)

    @property
    def is_rectangle(self) -> bool:
        return self.r2 is not None


@dataclass(frozen=True)
class ResolvedQuery:
    """A Query paired with the non-empty, catalog-ordered tiles it intersects."""

    query: Query
    tiles: tuple  # Tuple[Tile, ...]

    @property
    def name(self) -> str:
        return self.query.name
