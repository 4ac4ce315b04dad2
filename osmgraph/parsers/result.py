from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from osmgraph.entities import OsmData


@dataclass
class ParseResult(OsmData):
    """Entity collections from one parse run, plus what was skipped along the way."""

    source: str = ""
    skipped: list[dict[str, Any]] = field(default_factory=list)

    @property
    def children_skipped(self) -> int:
        return len(self.skipped)

    def skip(self, element: str, parent_id: int | None, reason: str) -> None:
        self.skipped.append({"element": element, "parent_id": parent_id, "reason": reason})


def log_summary(logger: logging.Logger, result: ParseResult) -> None:
    logger.info(
        "Parsed %d nodes, %d ways, %d relations from %s",
        len(result.nodes),
        len(result.ways),
        len(result.relations),
        result.source,
    )
    if result.skipped:
        logger.warning(
            "Skipped %d child elements in %s (first reason: %s)",
            result.children_skipped,
            result.source,
            result.skipped[0]["reason"],
        )
