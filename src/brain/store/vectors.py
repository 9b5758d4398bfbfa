"""Qdrant similarity index for segments, knowledge chunks, and topics.

One collection holds every embedding, so all vectors share the configured
dimension. Each point id equals the id of the relational row it embeds and
carries a small payload:
- kind: "segment", "chunk", or "topic"
- meeting_id (segments), source_id (chunks), name (topics)
- text: the embedded text, so hits can be rendered even when the row's
  owner cannot be resolved

The Qdrant client is synchronous; every call runs in a worker thread via
asyncio.to_thread so the event loop keeps serving reads while a write
transaction waits on the index. Calls to the embedded (path or
:memory:) client are serialized, since it is not safe for concurrent use.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from qdrant_client import QdrantClient
from qdrant_client.http.exceptions import ResponseHandlingException
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchAny,
    PayloadSchemaType,
    PointIdsList,
    PointStruct,
    ScoredPoint,
    VectorParams,
)

from src.brain.config import BrainConfig
from src.brain.errors import InvalidRequestError, StoreUnavailableError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

KIND_SEGMENT = "segment"
KIND_CHUNK = "chunk"
KIND_TOPIC = "topic"


class VectorIndex:
    """Cosine similarity index backed by a single Qdrant collection.

    Args:
        config: Brain configuration (connection, collection, dimensions).
        client: Pre-built client, mainly for tests. Built from config when
            omitted: remote if qdrant_url is set, local path otherwise.
    """

    def __init__(self, config: BrainConfig, client: QdrantClient | None = None) -> None:
        self._collection = config.collection_name
        self._dimensions = config.embedding_dimensions
        self._local = not config.qdrant_url
        self._local_lock = asyncio.Lock()

        if client is not None:
            self._client = client
        elif config.qdrant_url:
            self._client = QdrantClient(
                url=config.qdrant_url,
                api_key=config.qdrant_api_key,
            )
        elif config.qdrant_path == ":memory:":
            self._client = QdrantClient(location=":memory:")
        else:
            self._client = QdrantClient(path=config.qdrant_path)

    @property
    def client(self) -> QdrantClient:
        """Expose the underlying Qdrant client for advanced operations."""
        return self._client

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            if self._local:
                async with self._local_lock:
                    return await asyncio.to_thread(fn, *args, **kwargs)
            return await asyncio.to_thread(fn, *args, **kwargs)
        except ResponseHandlingException as exc:
            raise StoreUnavailableError(f"Qdrant unreachable: {exc}") from exc

    async def initialize(self) -> None:
        """Create the collection if missing and verify its dimension."""
        if await self._call(self._client.collection_exists, self._collection):
            info = await self._call(self._client.get_collection, self._collection)
            size = getattr(info.config.params.vectors, "size", None)
            if size is not None and size != self._dimensions:
                raise InvalidRequestError(
                    f"Collection {self._collection} has dimension {size}, "
                    f"configured {self._dimensions}"
                )
            logger.info("vectors.collection_exists", collection=self._collection)
            return

        await self._call(
            self._client.create_collection,
            collection_name=self._collection,
            vectors_config=VectorParams(size=self._dimensions, distance=Distance.COSINE),
        )
        for field in ["kind", "meeting_id", "source_id"]:
            await self._call(
                self._client.create_payload_index,
                collection_name=self._collection,
                field_name=field,
                field_schema=PayloadSchemaType.KEYWORD,
            )
        logger.info(
            "vectors.collection_created",
            collection=self._collection,
            dimensions=self._dimensions,
        )

    async def upsert(self, points: list[tuple[str, list[float], dict[str, Any]]]) -> None:
        """Insert or replace (id, vector, payload) points.

        Raises:
            InvalidRequestError: If a vector does not match the dimension.
        """
        if not points:
            return
        structs: list[PointStruct] = []
        for point_id, vector, payload in points:
            if len(vector) != self._dimensions:
                raise InvalidRequestError(
                    f"Vector for {point_id} has {len(vector)} dimensions, "
                    f"expected {self._dimensions}"
                )
            structs.append(PointStruct(id=point_id, vector=vector, payload=payload))
        await self._call(self._client.upsert, collection_name=self._collection, points=structs)

    async def search(
        self,
        vector: list[float],
        kinds: list[str],
        limit: int,
        source_ids: list[str] | None = None,
    ) -> list[ScoredPoint]:
        """Rank points of the given kinds by cosine similarity.

        Args:
            vector: Query embedding.
            kinds: Point kinds to consider.
            limit: Maximum number of hits.
            source_ids: Restrict chunk hits to these source ids.

        Returns:
            Scored points, best first.
        """
        if limit <= 0:
            return []
        must: list[FieldCondition] = [
            FieldCondition(key="kind", match=MatchAny(any=kinds)),
        ]
        if source_ids is not None:
            must.append(FieldCondition(key="source_id", match=MatchAny(any=source_ids)))

        result = await self._call(
            self._client.query_points,
            collection_name=self._collection,
            query=vector,
            query_filter=Filter(must=must),
            limit=limit,
            with_payload=True,
        )
        return list(result.points)

    async def delete_ids(self, point_ids: list[str]) -> None:
        if not point_ids:
            return
        await self._call(
            self._client.delete,
            collection_name=self._collection,
            points_selector=PointIdsList(points=point_ids),
        )

    async def delete_where(self, key: str, values: list[str]) -> None:
        """Delete every point whose payload[key] is one of values."""
        if not values:
            return
        await self._call(
            self._client.delete,
            collection_name=self._collection,
            points_selector=FilterSelector(
                filter=Filter(must=[FieldCondition(key=key, match=MatchAny(any=values))])
            ),
        )

    def close(self) -> None:
        """Close the Qdrant client connection."""
        self._client.close()
