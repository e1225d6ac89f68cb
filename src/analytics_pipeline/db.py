"""MongoDB helpers: client creation and the streaming document source.

Centralizes creation of Mongo clients and the cursor wrapper that turns a
collection into the iterable of documents consumed by the engine.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

import certifi

from analytics_pipeline.config import Settings
from analytics_pipeline.errors import SourceError

log = logging.getLogger(__name__)


def get_client(uri: str, tls: bool = True) -> MongoClient:
    """Return a configured PyMongo MongoClient for the provided URI.

    Args:
        uri: MongoDB connection URI.
        tls: Connect over TLS using the certifi CA bundle.

    Returns:
        Configured MongoClient instance.
    """
    options: dict[str, Any] = {
        "serverSelectionTimeoutMS": 30000,
        "socketTimeoutMS": 30000,
        "connectTimeoutMS": 30000,
    }
    if tls:
        options.update(tls=True, tlsCAFile=certifi.where())
    return MongoClient(uri, **options)


def get_db(
    client: MongoClient[dict[str, Any]],
    db_name: str,
) -> Database[dict[str, Any]]:
    """Return the named Database instance from a MongoClient.

    Args:
        client: PyMongo MongoClient.
        db_name: Database name.

    Returns:
        A Database object.
    """
    return client[db_name]


def iter_documents(
    collection: Collection[dict[str, Any]],
    query: dict[str, Any] | None = None,
    projection: dict[str, Any] | None = None,
    batch_size: int = 1000,
) -> Iterator[dict[str, Any]]:
    """Stream documents from `collection` in cursor batches.

    Args:
        collection: Source collection (read only).
        query: Optional server-side filter.
        projection: Optional projection.
        batch_size: Documents fetched per round trip.

    Yields:
        Raw documents as returned by PyMongo.

    Raises:
        SourceError: if the server becomes unreachable before or mid-stream.
    """
    log.info("Streaming documents from %s", collection.full_name)
    n = 0
    try:
        cursor = collection.find(query or {}, projection).batch_size(batch_size)
        for doc in cursor:
            n += 1
            yield doc
    except PyMongoError as e:
        raise SourceError(
            f"reading {collection.full_name} failed after {n} documents: {e}"
        ) from e
    log.info("Read %d documents from %s", n, collection.full_name)


def collection_info(client: MongoClient[dict[str, Any]], settings: Settings) -> list[dict[str, Any]]:
    """Return the configured source collections with their document counts.

    Raises:
        SourceError: if the server cannot be reached.
    """
    targets = [
        ("movies", settings.movies_db, settings.movies_collection),
        ("airbnb", settings.listings_db, settings.listings_collection),
    ]
    out: list[dict[str, Any]] = []
    try:
        for analysis, db_name, coll_name in targets:
            coll = get_db(client, db_name)[coll_name]
            out.append(
                {
                    "analysis": analysis,
                    "database": db_name,
                    "collection": coll_name,
                    "documents": coll.estimated_document_count(),
                }
            )
    except PyMongoError as e:
        raise SourceError(f"cannot reach MongoDB: {e}") from e
    return out
