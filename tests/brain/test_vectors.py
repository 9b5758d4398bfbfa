"""Tests for VectorIndex's handling of the synchronous Qdrant client."""

from __future__ import annotations

import asyncio
import threading

import pytest
from qdrant_client.http.exceptions import ResponseHandlingException

from src.brain.errors import StoreUnavailableError
from src.brain.store.vectors import VectorIndex


class BlockingClient:
    """Qdrant client double whose delete() blocks until released."""

    def __init__(self, error: Exception | None = None) -> None:
        self.entered = threading.Event()
        self.release = threading.Event()
        self.thread_ids: list[int] = []
        self.error = error

    def delete(self, **kwargs) -> None:
        self.thread_ids.append(threading.get_ident())
        self.entered.set()
        if self.error is not None:
            raise self.error
        self.release.wait(timeout=5)

    def close(self) -> None:
        pass


class TestClientCalls:
    async def test_call_runs_off_the_event_loop(self, config):
        client = BlockingClient()
        index = VectorIndex(config, client=client)

        task = asyncio.create_task(index.delete_ids(["a"]))
        assert await asyncio.to_thread(client.entered.wait, 5)

        # The loop is free while the client call is still in flight.
        assert not task.done()
        client.release.set()
        await task

        assert client.thread_ids and client.thread_ids[0] != threading.get_ident()

    async def test_unreachable_maps_to_store_unavailable(self, config):
        client = BlockingClient(error=ResponseHandlingException(ConnectionError("refused")))
        index = VectorIndex(config, client=client)

        with pytest.raises(StoreUnavailableError):
            await index.delete_where("meeting_id", ["m1"])

    async def test_empty_delete_skips_client(self, config):
        client = BlockingClient()
        index = VectorIndex(config, client=client)

        await index.delete_ids([])

        assert client.thread_ids == []
