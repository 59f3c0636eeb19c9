"""
Geometric inclusion tests applied while tiles are read.

ClipPredicate is derived from a Query. The same predicate is used as an
in-memory numpy mask on each decoded chunk and can be exported as a PDAL
filters.expression stage for readers that filter during decode. Both forms
use the same closed inequalities, so a point on the ROI border is kept by
either.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence

import numpy as np

from .errors import InvalidArgument
from .shapes import BBox, Query


@dataclass(frozen=True)
class ClipPredicate:
    x: float
    y: float
    r: float
    r2: Optional[float] = None

    @classmethod
    def for_query(cls, query: Query) -> "ClipPredicate":
        return cls(query.x, query.y, query.r, query.r2)

    @property
    def is_rectangle(self) -> bool:
        return self.r2 is not None

    @property
    def bbox(self) -> BBox:
        """Bounds handed to readers that support spatial queries (COPC)."""
        half_height = self.r if self.r2 is None else self.r2
        return (self.x - self.r, self.y - half_height, self.x + self.r, self.y + half_height)

    def includes(self, px, py):
        """Inclusion test; scalars give a bool, arrays give a boolean mask."""
        px = np.asarray(px, dtype=np.float64)
        py = np.asarray(py, dtype=np.float64)

        if self.r2 is None:
            dx = px - self.x
            dy = py - self.y
            mask = dx * dx + dy * dy <= self.r * self.r
        else:
            mask = (
                (px >= self.x - self.r) & (px <= self.x + self.r)
                & (py >= self.y - self.r2) & (py <= self.y + self.r2)
            )

        if mask.ndim == 0:
            return bool(mask)
        return mask

    def pdal_stage(self) -> Dict[str, str]:
        """The predicate as a PDAL pipeline stage."""
        if self.r2 is None:
            expression = (
                f"(X - {self.x!r}) * (X - {self.x!r}) + (Y - {self.y!r}) * (Y - {self.y!r})"
                f" <= {self.r * self.r!r}"
            )
        else:
            xmin, ymin, xmax, ymax = self.bbox
            expression = (
                f"X >= {xmin!r} && X <= {xmax!r} && Y >= {ymin!r} && Y <= {ymax!r}"
            )
        return {"type": "filters.expression", "expression": expression}


@dataclass(frozen=True)
class StreamFilter:
    """
    Attribute filter applied together with the clip predicate.

    keep_classes: only keep these classification codes (None = all)
    drop_classes: discard these classification codes
    drop_withheld: discard points flagged as withheld
    """

    keep_classes: Optional[Sequence[int]] = None
    drop_classes: Sequence[int] = field(default_factory=tuple)
    drop_withheld: bool = False

    @property
    def is_noop(self) -> bool:
        return self.keep_classes is None and not self.drop_classes and not self.drop_withheld

    def mask(self, columns: Mapping[str, np.ndarray], n: int) -> np.ndarray:
        keep = np.ones(n, dtype=bool)
        if self.keep_classes is not None or self.drop_classes:
            if "classification" not in columns:
                return keep if self.keep_classes is None else np.zeros(n, dtype=bool)
            classes = np.asarray(columns["classification"])
            if self.keep_classes is not None:
                keep &= np.isin(classes, list(self.keep_classes))
            if self.drop_classes:
                keep &= ~np.isin(classes, list(self.drop_classes))
        if self.drop_withheld and "withheld" in columns:
            keep &= ~np.asarray(columns["withheld"], dtype=bool)
        return keep

    @classmethod
    def parse(cls, text: str) -> "StreamFilter":
        """
        Parse a reader filter string.

        Supported flags: "-keep_class 2 5", "-drop_class 7", "-drop_withheld".

        Raises:
            InvalidArgument: on an unknown flag or a class code that is not an integer
        """
        keep = None
        drop = []
        drop_withheld = False
        current = None
        for token in text.split():
            if token == "-keep_class":
                keep = [] if keep is None else keep
                current = keep
            elif token == "-drop_class":
                current = drop
            elif token == "-drop_withheld":
                drop_withheld = True
                current = None
            elif token.startswith("-"):
                raise InvalidArgument("stream_filter", f"unsupported flag {token!r}")
            elif current is None:
                raise InvalidArgument("stream_filter", f"unexpected value {token!r} in {text!r}")
            else:
                try:
                    current.append(int(token))
                except ValueError:
                    raise InvalidArgument("stream_filter", f"class code {token!r} is not an integer") from None
        return cls(
            keep_classes=tuple(keep) if keep is not None else None,
            drop_classes=tuple(drop),
            drop_withheld=drop_withheld,
        )
