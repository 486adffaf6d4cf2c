"""
The workshop context: every store and collaborator the engine needs.

A context is created once at process start and passed explicitly to the
catalog and playground functions; nothing in the engine reaches for
module-level state.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from fastapi import Request

from .cache import BackgroundTasks, Cache
from .config import WorkshopConfig
from .mdx import MarkdownCompiler, MdxCompiler
from .process_manager import DevServerManager, ProcessManager
from .staleness import StalenessTracker
from .watcher import FileWatcher


@dataclass
class AppCaches:
    apps: Cache = field(default_factory=lambda: Cache("apps"))
    problem: Cache = field(default_factory=lambda: Cache("problem-apps"))
    solution: Cache = field(default_factory=lambda: Cache("solution-apps"))
    example: Cache = field(default_factory=lambda: Cache("example-apps"))
    playground: Cache = field(default_factory=lambda: Cache("playground-apps"))


@dataclass
class WorkshopContext:
    config: WorkshopConfig
    compiler: MdxCompiler
    process_manager: ProcessManager
    tracker: StalenessTracker
    watcher: Optional[FileWatcher] = None
    caches: AppCaches = field(default_factory=AppCaches)
    background: BackgroundTasks = field(default_factory=BackgroundTasks)
    clock: Callable[[], float] = time.time
    playground_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    # last build failures per app kind, keyed by directory
    build_errors: Dict[str, Dict[str, str]] = field(default_factory=dict)

    @property
    def root(self):
        return self.config.root

    def all_build_errors(self) -> List[dict]:
        return [
            {"kind": kind, "path": path, "error": error}
            for kind, errors in sorted(self.build_errors.items())
            for path, error in sorted(errors.items())
        ]


def create_context(
    config: Optional[WorkshopConfig] = None,
    *,
    compiler: Optional[MdxCompiler] = None,
    process_manager: Optional[ProcessManager] = None,
    watch: bool = True,
    clock: Callable[[], float] = time.time,
) -> WorkshopContext:
    """Build a context with the default collaborators for ``config``."""
    config = config or WorkshopConfig.from_env()
    return WorkshopContext(
        config=config,
        compiler=compiler or MarkdownCompiler(),
        process_manager=process_manager or DevServerManager(health_timeout=config.health_timeout),
        tracker=StalenessTracker(clock=clock),
        watcher=FileWatcher(config.root) if watch else None,
        clock=clock,
    )


def get_workshop_context(request: Request) -> WorkshopContext:
    """FastAPI dependency: the context attached to the running application."""
    return request.app.state.workshop
