"""Result sinks: persist one analysis output document.

- `JsonFileSink` writes relaxed Extended JSON (datetimes and Decimal128 values
  survive the round trip through `bson.json_util`).
- `MongoSink` upserts the document into a results collection keyed by the
  analysis name, so reruns replace the previous result.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping, TYPE_CHECKING

from bson import json_util
from pymongo import UpdateOne
from pymongo.collection import Collection

if TYPE_CHECKING:
    from analytics_pipeline.analyses.orchestrator import Analysis

log = logging.getLogger(__name__)

JSON_OPTIONS = json_util.RELAXED_JSON_OPTIONS


def dumps(result: Mapping[str, Any]) -> str:
    """Serialise an output document the way `JsonFileSink` writes it."""
    return json_util.dumps(result, json_options=JSON_OPTIONS, indent=2)


class JsonFileSink:
    """Write each result to ``<directory>/<analysis.output_file>``."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def path_for(self, analysis: "Analysis") -> Path:
        return self.directory / analysis.output_file

    def write(self, analysis: "Analysis", result: Mapping[str, Any]) -> None:
        path = self.path_for(analysis)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(dumps(result), encoding="utf-8")
        log.info("Full results saved to: %s", path)


class MongoSink:
    """Upsert results into `collection`, one document per analysis."""

    def __init__(self, collection: Collection[dict[str, Any]]) -> None:
        self.collection = collection

    def write(self, analysis: "Analysis", result: Mapping[str, Any]) -> None:
        op = UpdateOne(
            {"analysis": analysis.name},
            {"$set": {"analysis": analysis.name, "result": dict(result)}},
            upsert=True,
        )
        self.collection.bulk_write([op], ordered=True)
        log.info("Result for %s stored in %s", analysis.name, self.collection.full_name)
