"""
File watching for the workshop tree.

Wraps ``watchfiles.awatch`` in a background task and fans each changed path
out to the registered listeners. Subtrees can be paused with
:meth:`FileWatcher.unwatch` (the playground sync does this while it
rewrites the playground) and resumed with :meth:`FileWatcher.add`.
"""

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Set, Union

from watchfiles import DefaultFilter, awatch

from .shared.logger import get_logger

logger = get_logger(__name__)

ChangeListener = Callable[[str, str], Awaitable[None]]


class WorkshopFilter(DefaultFilter):
    """watchfiles' default ignore rules plus the workshop build cache."""

    ignore_dirs = (*DefaultFilter.ignore_dirs, ".cache", "build")


class FileWatcher:
    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self._listeners: List[ChangeListener] = []
        self._paused: Set[Path] = set()
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    def on_change(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def unwatch(self, directory: Union[str, Path]) -> None:
        self._paused.add(Path(directory))

    def add(self, directory: Union[str, Path]) -> None:
        self._paused.discard(Path(directory))

    def is_paused(self, file_path: Union[str, Path]) -> bool:
        file_path = Path(file_path)
        return any(file_path == paused or paused in file_path.parents for paused in self._paused)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.ensure_future(self._run())

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            try:
                await self._task
            except Exception as e:
                logger.error("File watcher stopped with error: %s", e)
            self._task = None

    async def dispatch(self, event: str, file_path: str) -> None:
        """Forward one change to every listener unless its subtree is paused."""
        if self.is_paused(file_path):
            return
        for listener in self._listeners:
            try:
                await listener(event, file_path)
            except Exception as e:
                logger.error("Error handling change of %s: %s", file_path, e)

    async def _run(self) -> None:
        logger.info("Watching %s for changes", self.root)
        async for changes in awatch(self.root, watch_filter=WorkshopFilter(), stop_event=self._stop_event):
            for change, file_path in changes:
                await self.dispatch(change.name, file_path)
