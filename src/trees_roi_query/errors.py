"""Error taxonomy of the ROI query engine."""

from pathlib import Path
from typing import Union


class InvalidArgument(ValueError):
    """Malformed query input. Raised before any tile is read."""

    def __init__(self, argument: str, message: str):
        super().__init__(f"{argument}: {message}")
        self.argument = argument


class CatalogError(RuntimeError):
    """The catalog is empty or malformed. No query is attempted."""


class TileReadError(RuntimeError):
    """A tile could not be read for a given query.

    Instances are attached to the query's result instead of being raised, so a
    single unreadable file never aborts the rest of the batch.
    """

    def __init__(self, path: Union[str, Path], reason: str):
        super().__init__(f"{Path(path).name}: {reason}")
        self.path = str(path)
        self.reason = reason

    def __reduce__(self):
        # Keeps the (path, reason) signature when results cross a process pool
        return (self.__class__, (self.path, self.reason))
