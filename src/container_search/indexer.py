"""Debounced container indexing.

Every container has a small state entry on the indexer loop: the latest
generation number, the pending debounce timer and the in-flight write.
Scheduling bumps the generation and replaces the timer, so a burst of
updates collapses into one write of the last contents. Writes for the same
container run one after another, and a write whose generation has been
superseded is dropped before it reaches storage.

All state is owned by the loop thread; public methods only post work to it.
"""

import asyncio
import concurrent.futures
import itertools
import threading
import time
from dataclasses import dataclass
from typing import Any, Coroutine, Sequence

from loguru import logger
from pydantic import BaseModel, Field

from container_search.embedding import EmbeddingService, TaskType
from container_search.models import (
    ContainerChunk,
    ContainerLocations,
    LocationData,
    SerializedItem,
)
from container_search.runtime import BackgroundLoop
from container_search.serializer import extract_container_path
from container_search.storage import VectorStorage


class IndexingConfig(BaseModel):
    """Configuration for the background indexer.

    Attributes:
        debounce_delay_ms: Quiet period before a container is re-indexed
        worker_threads: Worker pool size for blocking calls (at least 2)
        shutdown_grace_seconds: Time in-flight writes get to finish on shutdown
    """

    debounce_delay_ms: int = Field(default=2000, ge=0)
    worker_threads: int = Field(default=2, ge=2, le=64)
    shutdown_grace_seconds: float = Field(default=10.0, ge=0.0)


@dataclass
class _LocationState:
    generation: int
    timer: asyncio.TimerHandle | None = None
    task: asyncio.Task | None = None


class ContainerIndexer:
    """Schedules embedding and storage of container contents."""

    def __init__(
        self,
        embedding: EmbeddingService,
        storage: VectorStorage,
        config: IndexingConfig | None = None,
        runtime: BackgroundLoop | None = None,
    ):
        """Initialize indexer.

        Args:
            embedding: Service used to embed item text
            storage: Destination for embedded chunks
            config: Indexing configuration (uses defaults if None)
            runtime: Shared background loop; a private one is started if None
        """
        self.embedding = embedding
        self.storage = storage
        self.config = config or IndexingConfig()
        self._owns_runtime = runtime is None
        self.runtime = runtime or BackgroundLoop(self.config.worker_threads)

        # loop-thread only
        self._states: dict[LocationData, _LocationState] = {}
        self._background: set[asyncio.Task] = set()
        self._generations = itertools.count(1)

        self._shutdown_lock = threading.Lock()
        self._is_shutdown = False

    @property
    def debounce_seconds(self) -> float:
        return self.config.debounce_delay_ms / 1000

    def schedule_index(
        self, locations: ContainerLocations, items: Sequence[SerializedItem]
    ) -> None:
        """Queue a re-index of a container. Never blocks the caller.

        An empty `items` deletes the container immediately instead of
        waiting for the debounce delay.
        """
        primary = locations.primary_location
        if self._is_shutdown:
            logger.warning(f"Indexer is shut down; ignoring update for {primary}")
            return
        try:
            self.runtime.call_soon(self._on_schedule, locations, tuple(items))
        except RuntimeError as e:
            logger.warning(f"Indexer loop stopped; ignoring update for {primary}: {e}")

    def schedule_delete(self, position: LocationData) -> None:
        """Queue removal of the container occupying `position`."""
        if self._is_shutdown:
            logger.warning(f"Indexer is shut down; ignoring removal of {position}")
            return
        coro = self._resolve_and_delete(position)
        try:
            self.runtime.call_soon(self._spawn, coro)
        except RuntimeError as e:
            coro.close()
            logger.warning(f"Indexer loop stopped; ignoring removal of {position}: {e}")

    def pending_count(self) -> int:
        return len(self._states)

    def is_pending(self, location: LocationData) -> bool:
        return location in self._states

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until no timers, writes or registrations remain.

        Returns:
            True if idle, False if the timeout expired first
        """
        if self.runtime.in_loop_thread():
            raise RuntimeError("wait_until_idle cannot be called from the indexer loop")
        future = self.runtime.submit(self._until_idle())
        try:
            future.result(timeout=timeout)
            return True
        except concurrent.futures.TimeoutError:
            future.cancel()
            return False

    async def _until_idle(self) -> None:
        while self._states or self._background:
            await asyncio.sleep(0.01)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = self.runtime.loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _on_schedule(
        self, locations: ContainerLocations, items: tuple[SerializedItem, ...]
    ) -> None:
        primary = locations.primary_location
        self._spawn(self._register_positions(locations))

        if not items:
            logger.debug(f"Container at {primary} is empty, deleting from index")
            self._supersede_with_delete(primary)
            return

        state = self._advance(primary)
        state.timer = self.runtime.loop.call_later(
            self.debounce_seconds, self._on_timer, primary, state.generation, items
        )
        logger.debug(
            f"Scheduled index of {len(items)} items at {primary} "
            f"(generation {state.generation})"
        )

    def _advance(self, primary: LocationData) -> _LocationState:
        """Start a new generation for a container and cancel its pending timer."""
        generation = next(self._generations)
        state = self._states.get(primary)
        if state is None:
            state = _LocationState(generation=generation)
            self._states[primary] = state
        else:
            state.generation = generation
        if state.timer is not None:
            state.timer.cancel()
            state.timer = None
        return state

    def _is_current(self, primary: LocationData, generation: int) -> bool:
        state = self._states.get(primary)
        return state is not None and state.generation == generation

    def _chain(self, primary: LocationData, coro: Coroutine[Any, Any, None]) -> None:
        state = self._states[primary]
        task = self.runtime.loop.create_task(coro)
        state.task = task
        task.add_done_callback(lambda t: self._settle(primary, t))

    def _settle(self, primary: LocationData, task: asyncio.Task) -> None:
        state = self._states.get(primary)
        if state is not None and state.task is task and state.timer is None:
            del self._states[primary]

    def _supersede_with_delete(self, primary: LocationData) -> None:
        state = self._advance(primary)
        self._chain(primary, self._delete(primary, state.generation, state.task))

    def _on_timer(
        self, primary: LocationData, generation: int, items: tuple[SerializedItem, ...]
    ) -> None:
        if not self._is_current(primary, generation):
            return
        state = self._states[primary]
        state.timer = None
        self._chain(primary, self._index(primary, generation, items, state.task))

    async def _register_positions(self, locations: ContainerLocations) -> None:
        try:
            await self.storage.register_container_positions(locations)
        except Exception as e:
            logger.warning(
                f"Failed to register positions for container at "
                f"{locations.primary_location}: {e}"
            )

    async def _resolve_and_delete(self, position: LocationData) -> None:
        try:
            primary = await self.storage.get_primary_location(position)
        except Exception as e:
            logger.warning(f"Failed to resolve container at {position}: {e}")
            primary = None
        self._supersede_with_delete(primary or position)

    @staticmethod
    async def _after(previous: asyncio.Task | None) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])

    async def _delete(
        self, primary: LocationData, generation: int, previous: asyncio.Task | None
    ) -> None:
        await self._after(previous)
        if not self._is_current(primary, generation):
            return
        try:
            await self.storage.delete(primary)
            logger.info(f"Removed container at {primary} from index")
        except Exception as e:
            logger.warning(f"Failed to delete container at {primary}: {e}")

    async def _index(
        self,
        primary: LocationData,
        generation: int,
        items: tuple[SerializedItem, ...],
        previous: asyncio.Task | None,
    ) -> None:
        try:
            texts = [item.embedding_text.lower() for item in items]
            outcomes = await asyncio.gather(
                *(self.embedding.embed(text, TaskType.RETRIEVAL_DOCUMENT) for text in texts),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome
            vectors = outcomes

            await self._after(previous)
            if not self._is_current(primary, generation):
                logger.debug(f"Dropping superseded index of {primary} (generation {generation})")
                return

            timestamp = int(time.time() * 1000)
            chunks = []
            for i, (item, text, vector) in enumerate(zip(items, texts, vectors, strict=True)):
                path = extract_container_path(item.storage_json)
                chunks.append(
                    ContainerChunk(
                        location=primary,
                        chunk_index=i,
                        text=text,
                        embedding=vector,
                        timestamp=timestamp,
                        storage_json=item.storage_json,
                        container_path=None if path.is_root() else path,
                    )
                )

            await self.storage.index_chunks(chunks)
            logger.info(f"Indexed {len(chunks)} items for container at {primary}")

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Failed to index container at {primary}: {e}")

    def shutdown(self) -> None:
        """Cancel pending timers, let in-flight writes finish, stop the loop.

        In-flight writes get `shutdown_grace_seconds` to complete and are
        cancelled after that. Calling this more than once is a no-op.
        """
        with self._shutdown_lock:
            if self._is_shutdown:
                return
            self._is_shutdown = True

        if self.runtime.in_loop_thread():
            raise RuntimeError("shutdown cannot be called from the indexer loop")

        grace = self.config.shutdown_grace_seconds
        if self.runtime.is_running:
            future = self.runtime.submit(self._drain(grace))
            try:
                future.result(timeout=grace + 5)
            except concurrent.futures.TimeoutError:
                logger.warning("Indexer did not drain within the shutdown grace period")

        if self._owns_runtime:
            self.runtime.stop()
        logger.info("Container indexer shut down")

    async def _drain(self, grace: float) -> None:
        for state in self._states.values():
            if state.timer is not None:
                state.timer.cancel()
                state.timer = None

        tasks = {state.task for state in self._states.values() if state.task is not None}
        tasks |= self._background
        tasks = {task for task in tasks if not task.done()}
        if tasks:
            logger.info(f"Waiting up to {grace}s for {len(tasks)} indexing tasks")
            _, pending = await asyncio.wait(tasks, timeout=grace)
            if pending:
                logger.warning(f"Cancelling {len(pending)} indexing tasks still running")
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        self._states.clear()
