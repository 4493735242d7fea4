"""
Published model state and the reload coordinator for the RBAC Service.
"""

import asyncio
import time
from typing import Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.errors import StoreUnavailableError, ValidationError
from .rbac.graph import ModelGraph
from .persistence.base import TupleStore


class EnforcerContext:
    """Long-lived holder of the published ModelGraph snapshot.

    Readers take ``snapshot`` once and work against it without locking.
    Writers (administration and reload) hold ``write_lock`` while they
    build a replacement, then ``publish`` it with a single assignment.
    """

    def __init__(self, graph: Optional[ModelGraph] = None, metrics: Optional[MetricsCollector] = None):
        self._snapshot = graph if graph is not None else ModelGraph()
        self.write_lock = asyncio.Lock()
        self.metrics = metrics
        self.generation = 0

    @property
    def snapshot(self) -> ModelGraph:
        return self._snapshot

    def publish(self, graph: ModelGraph) -> None:
        self._snapshot = graph
        self.generation += 1
        if self.metrics:
            self.metrics.set_gauge("rbac_snapshot_tuples", len(graph))


class ReloadCoordinator:
    """Rebuilds the model from the tuple store and publishes it."""

    def __init__(self, context: EnforcerContext, store: TupleStore, metrics: Optional[MetricsCollector] = None):
        self.logger = get_logger("rbac.reload")
        self.context = context
        self.store = store
        self.metrics = metrics

        self.reload_task: Optional[asyncio.Task] = None
        self.running = False

    async def reload(self) -> ModelGraph:
        """Replace the published snapshot with a fresh one from the store.

        On failure the previous snapshot stays published and
        StoreUnavailableError is raised.
        """
        start_time = time.time()

        async with self.context.write_lock:
            try:
                records = await self.store.load_all()
                graph = ModelGraph.from_tuples(records)
            except StoreUnavailableError as e:
                self._record("error")
                self.logger.error("Reload failed, keeping previous snapshot", error=e.message)
                raise
            except ValidationError as e:
                self._record("error")
                self.logger.error("Reload found malformed tuples, keeping previous snapshot", error=e.message)
                raise StoreUnavailableError(f"Malformed tuple data: {e.message}", e.details)

            self.context.publish(graph)

        self._record("ok")
        self.logger.info(
            "Model reloaded",
            store=self.store.name,
            tuples=len(graph),
            generation=self.context.generation,
            duration_ms=round((time.time() - start_time) * 1000, 2)
        )
        return graph

    def _record(self, status: str):
        if self.metrics:
            self.metrics.increment_counter("rbac_reload_total", status=status)

    async def start_periodic(self, interval_seconds: float):
        """Reload every interval_seconds in the background."""
        self.running = True
        self.reload_task = asyncio.create_task(self._reload_loop(interval_seconds))
        self.logger.info("Periodic reload started", interval_seconds=interval_seconds)

    async def stop(self):
        """Stop the periodic reload loop, if running."""
        self.running = False
        if self.reload_task:
            self.reload_task.cancel()
            try:
                await self.reload_task
            except asyncio.CancelledError:
                pass
            self.reload_task = None
            self.logger.info("Periodic reload stopped")

    async def _reload_loop(self, interval_seconds: float):
        while self.running:
            try:
                await asyncio.sleep(interval_seconds)
                await self.reload()
            except asyncio.CancelledError:
                break
            except StoreUnavailableError:
                # Already logged; keep serving the last good snapshot
                continue
            except Exception as e:
                self.logger.error("Error in periodic reload", error=str(e), exc_info=True)
