"""Shared runtime objects handed to every tool handler."""

from __future__ import annotations

import logging
from pathlib import Path

from ..config import Config
from ..core.client import BackendClient
from ..sync.controller import SyncController
from ..sync.engine import SyncEngine
from ..sync.events import SyncEventBus
from ..sync.multiplexer import ChangeMultiplexer
from ..sync.pending import PendingOperationLog
from ..sync.rest_store import RestStore
from ..sync.store import StoreAdapter

logger = logging.getLogger(__name__)


class SyncContext:
    """One store and engine, plus a lazily created controller per project.

    Attributes:
        store: Store every tool reads and writes.
        config: Runtime configuration.
        client: Backend client, or ``None`` for the memory backend.
        engine: Engine shared by all controllers.
        pending: Offline queue shared by all controllers.
        multiplexer: Live-change subscriptions, one per project.
    """

    def __init__(
        self,
        store: StoreAdapter,
        config: Config,
        client: BackendClient | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.client = client
        self.events = SyncEventBus()
        self.engine = SyncEngine(store, self.events)
        self.pending = PendingOperationLog(
            Path(config.state_dir) if config.state_dir else None
        )
        self.multiplexer = ChangeMultiplexer(store)
        self._controllers: dict[str, SyncController] = {}

    def controller(self, project_id: str) -> SyncController:
        """Return the project's controller, creating it on first use.

        A new controller is started at once so live changes from the
        store reach it; tool handlers call this inside the event loop.
        """
        controller = self._controllers.get(project_id)
        if controller is None:
            controller = SyncController(
                project_id,
                self.engine,
                pending=self.pending,
                multiplexer=self.multiplexer,
            )
            self._controllers[project_id] = controller
            controller.start()
            logger.debug("Created controller for project %s", project_id)
        return controller

    def projects(self) -> list[str]:
        return sorted(self._controllers)

    def close(self) -> None:
        """Drop every live subscription and stop background polling."""
        for controller in self._controllers.values():
            controller.stop()
        self.multiplexer.close_all()
        if isinstance(self.store, RestStore):
            self.store.close()
