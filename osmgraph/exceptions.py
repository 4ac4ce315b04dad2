from __future__ import annotations


class OsmGraphError(Exception):
    """Base class for errors raised by the ingestion and fetch pipeline."""


class FormatError(OsmGraphError, ValueError):
    """A scalar in the source document or in a decoded cell is malformed."""


class MemberReferenceError(OsmGraphError, ValueError):
    """A relation member names a target kind that is not node, way or relation."""


class NoDataError(OsmGraphError):
    """A mandatory column came back null or absent."""


class StoreError(OsmGraphError):
    """The store rejected a statement or the connection failed."""

    def __init__(self, message: str, table: str | None = None) -> None:
        super().__init__(message)
        self.table = table
