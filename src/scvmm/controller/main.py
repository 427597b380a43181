"""Main agent implementation."""

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Hashable, List, Optional, Tuple

from watchfiles import Change, awatch

from scvmm.controller.config import ConfigManager
from scvmm.controller.provider import ConfigurationError
from scvmm.controller.reconciler import MachineReconciler
from scvmm.controller.store import FileStore
from scvmm.controller.workqueue import WorkQueue
from scvmm.remote.library import FunctionLibrary
from scvmm.utils.logging import setup_logging


logger = logging.getLogger(__name__)

MachineKey = Tuple[str, str]


class ControllerAgent:
    """Runs reconciliation workers fed by a store watcher and a periodic resync."""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = config_dir or Path("./configs")
        self.config_manager = ConfigManager(self.config_dir)
        self.store: Optional[FileStore] = None
        self.reconciler: Optional[MachineReconciler] = None
        self.queue: Optional[WorkQueue] = None
        self.shutdown_event = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    def initialize(self):
        """Initialize agent components."""
        config = self.config_manager.load()
        setup_logging(config.agent.log_level, config.agent.extra_debug)

        self.store = FileStore(Path(config.agent.store_dir))
        self.store.machines_dir.mkdir(parents=True, exist_ok=True)
        library = FunctionLibrary.load(config.agent.script_dir)
        self.reconciler = MachineReconciler(self.store, config, library=library)
        self.queue = WorkQueue()

        logger.info(f"Agent initialized, store at {self.store.store_dir}")

    async def run(self):
        """Run the agent main loop."""
        self.initialize()
        config = self.config_manager.config

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.shutdown)

        try:
            for i in range(config.agent.workers):
                self._tasks.append(asyncio.create_task(self._worker(i)))
            self._tasks.append(asyncio.create_task(self._resync_loop()))
            self._tasks.append(asyncio.create_task(self._watch_loop()))

            logger.info(f"Agent started with {config.agent.workers} workers, waiting for shutdown signal")
            await self.shutdown_event.wait()
        finally:
            await self._cleanup()

    async def enqueue_all(self):
        """Queue every stored machine."""
        for machine in await self.store.list_machines():
            self.queue.add((machine.metadata.namespace, machine.metadata.name))

    async def process(self, key: Hashable):
        """Run one attempt for a key and schedule the next one."""
        namespace, name = key
        try:
            result = await self.reconciler.reconcile(namespace, name)
        except ConfigurationError as e:
            logger.error(f"Not retrying {namespace}/{name}: {e}")
            self.queue.forget(key)
            return
        except Exception as e:
            delay = self.queue.add_rate_limited(key)
            logger.error(f"Reconciliation of {namespace}/{name} failed, retrying in {delay:.0f}s: {e}",
                         exc_info=self.reconciler.debug)
            return

        self.queue.forget(key)
        if result.requeue:
            logger.debug(f"Requeue {namespace}/{name} in {result.requeue_after} seconds")
            self.queue.add_after(key, result.requeue_after)

    async def _worker(self, index: int):
        logger.debug(f"Worker {index} started")
        while not self.shutdown_event.is_set():
            key = await self.queue.get()
            try:
                await self.process(key)
            finally:
                self.queue.done(key)

    async def _resync_loop(self):
        """Periodically queue every machine."""
        interval = self.config_manager.config.agent.resync_interval

        while not self.shutdown_event.is_set():
            try:
                logger.debug("Starting resync")
                await self.enqueue_all()
            except Exception as e:
                logger.error(f"Resync error: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    def keys_for_changes(self, changes) -> Tuple[List[MachineKey], bool]:
        """Map watched changes to machine keys.

        Returns the changed machines and whether a dependency record changed,
        which affects every machine. The agent's own writes are ignored.
        """
        keys: List[MachineKey] = []
        dependencies_changed = False
        for change, path in changes:
            key = self.store.machine_key(Path(path))
            if key is None:
                if Path(path).suffix == ".yaml" and not Path(path).name.startswith("."):
                    dependencies_changed = True
                continue
            if change != Change.deleted and self.store.is_own_write(Path(path)):
                continue
            if key not in keys:
                keys.append(key)
        return keys, dependencies_changed

    async def _watch_loop(self):
        """Watch the store directory for record changes."""
        logger.info(f"Starting store watcher on {self.store.store_dir}")
        try:
            async for changes in awatch(self.store.store_dir, stop_event=self.shutdown_event):
                keys, dependencies_changed = self.keys_for_changes(changes)
                if dependencies_changed:
                    logger.info("Dependency records changed, queueing all machines")
                    await self.enqueue_all()
                for key in keys:
                    logger.debug(f"Machine {key[0]}/{key[1]} changed")
                    self.queue.add(key)
        except Exception as e:
            if not self.shutdown_event.is_set():
                logger.error(f"Store watch error: {e}", exc_info=True)

    def shutdown(self):
        """Signal shutdown."""
        logger.info("Shutdown requested")
        self.shutdown_event.set()

    async def _cleanup(self):
        """Clean up resources."""
        logger.info("Cleaning up agent resources")

        for task in self._tasks:
            if not task.done():
                task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if self.queue:
            self.queue.shutdown()

        logger.info("Agent cleanup completed")


async def run_agent(config_dir: Optional[Path] = None):
    """Run the agent."""
    if config_dir is None:
        env_dir = os.environ.get("SCVMM_CONFIG_DIR")
        if env_dir:
            config_dir = Path(env_dir)

    agent = ControllerAgent(config_dir=config_dir)
    await agent.run()
