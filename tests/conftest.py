"""
Root conftest.py for workshop app tests.

Shared fixtures build a miniature workshop on disk and a context wired
with fake collaborators, so no node/npm processes or file watchers run.
"""

import json
import sys
from pathlib import Path

import pytest

# Ensure the project root is in the path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from workshop.config import WorkshopConfig
from workshop.context import create_context
from workshop.process_manager import StartResult
from workshop.models import ScriptDev


# ============================================================================
# Pytest Hooks
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "websocket: mark test as involving WebSocket communication",
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow running",
    )


def pytest_collection_modifyitems(config, items):
    """Mark tests with 'websocket' in their name."""
    for item in items:
        if "websocket" in item.name.lower():
            item.add_marker(pytest.mark.websocket)


# ============================================================================
# Fakes
# ============================================================================


class FakeClock:
    """Deterministic clock; every reading moves time forward by ``step``."""

    def __init__(self, start: float = 1_000_000.0, step: float = 0.001):
        self.now = start
        self.step = step

    def __call__(self) -> float:
        current = self.now
        self.now += self.step
        return current

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProcessManager:
    """In-memory stand-in for the dev server manager."""

    def __init__(self):
        self.running = set()
        self.busy_ports = set()
        self.started = []
        self.stopped = []
        self.messages = []

    async def start(self, app) -> StartResult:
        if not isinstance(app.dev, ScriptDev):
            return StartResult(running=False, status="no-dev-script")
        port = app.dev.port_number
        if port in self.busy_ports:
            return StartResult(running=False, status="port-unavailable", port_number=port)
        self.running.add(app.name)
        self.started.append(app.name)
        return StartResult(running=True, status="started", port_number=port)

    async def stop(self, app_name: str) -> None:
        self.running.discard(app_name)
        self.stopped.append(app_name)

    def is_running(self, app) -> bool:
        return app.name in self.running

    def is_port_free(self, port: int) -> bool:
        return port not in self.busy_ports

    async def send_message(self, app, message: str) -> None:
        self.messages.append((app.name, message))

    async def wait_until_healthy(self, app) -> bool:
        return app.name in self.running

    async def stop_all(self) -> None:
        for app_name in list(self.running):
            await self.stop(app_name)


# ============================================================================
# Workshop tree
# ============================================================================


def write_json(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")


def make_app_dir(path: Path, files=None) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    for name, content in (files or {}).items():
        file_path = path / name
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def workshop_root(tmp_path):
    """A small workshop:

    exercises/01.first    two steps, both with problem and solution
    exercises/02.second   one problem without a solution
    examples/a, examples/b
    """
    root = tmp_path / "workshop"
    write_json(root / "package.json", {
        "name": "test-workshop",
        "kcd-workshop": {"title": "Test Workshop", "epicWorkshopSlug": "test-workshop"},
    })
    exercises = root / "exercises"
    make_app_dir(exercises, {
        "README.mdx": "# Welcome\n\nStart here.\n",
        "FINISHED.mdx": "# Done\n\nThanks for coming.\n",
    })

    first = make_app_dir(exercises / "01.first", {"README.mdx": "# First Exercise\n"})
    make_app_dir(first / "01.problem.hello", {
        "README.mdx": "# Say Hello\n\n<EpicVideo url=\"https://example.com/hello\" />\n",
        "index.js": "console.log('hello')\n",
    })
    make_app_dir(first / "01.solution.hello", {
        "README.mdx": "# Say Hello (solved)\n",
        "index.js": "console.log('hello world')\n",
        "index.test.js": "test('hello')\n",
    })
    make_app_dir(first / "02.problem.two", {"index.js": "// two\n"})
    make_app_dir(first / "02.solution.two", {"index.js": "// two solved\n"})

    second = make_app_dir(exercises / "02.second", {"README.mdx": "---\ntitle: Second Exercise\n---\nBody\n"})
    make_app_dir(second / "01.problem", {"index.js": "// lonely\n"})

    make_app_dir(root / "examples" / "a", {"index.html": "<html><head><title>A</title></head></html>\n"})
    make_app_dir(root / "examples" / "b", {"index.js": "// b\n"})
    return root


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def process_manager():
    return FakeProcessManager()


@pytest.fixture
def ctx(workshop_root, clock, process_manager):
    """Workshop context over ``workshop_root`` with fake collaborators."""
    return create_context(
        WorkshopConfig(root=workshop_root),
        process_manager=process_manager,
        watch=False,
        clock=clock,
    )
