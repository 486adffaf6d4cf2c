"""
Workshop configuration for the workshop app.

The workshop root is determined by (in order of priority):
1. KCDSHOP_CONTEXT_CWD environment variable
2. The current working directory

Everything else the engine reads from disk (exercises, examples, the
playground and the build cache) is derived from that root.
"""

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

# Cache lifetime of every app record and of the whole catalog
APPS_TTL_SECONDS = 60 * 60 * 24

PLAYGROUND_PORT = 4000
PROBLEM_PORT_BASE = 6000
SOLUTION_PORT_BASE = 7000
EXAMPLE_PORT_BASE = 8000


def _default_hook_runners() -> Dict[str, str]:
    return {".js": "node", ".py": sys.executable}


@dataclass
class WorkshopConfig:
    """Filesystem layout and tunables of a workshop."""

    root: Path
    apps_ttl: float = APPS_TTL_SECONDS
    apps_swr: float = 0.0
    playground_port: int = PLAYGROUND_PORT
    problem_port_base: int = PROBLEM_PORT_BASE
    solution_port_base: int = SOLUTION_PORT_BASE
    example_port_base: int = EXAMPLE_PORT_BASE
    health_timeout: float = 15.0
    hook_runners: Dict[str, str] = field(default_factory=_default_hook_runners)

    def __post_init__(self):
        self.root = Path(self.root).resolve()

    @classmethod
    def from_env(cls, root: Optional[str] = None) -> "WorkshopConfig":
        """Build the configuration from the process environment."""
        root = root or os.environ.get("KCDSHOP_CONTEXT_CWD") or os.getcwd()
        return cls(
            root=Path(root),
            apps_swr=float(os.environ.get("KCDSHOP_APPS_SWR", 0)),
            health_timeout=float(os.environ.get("KCDSHOP_HEALTH_TIMEOUT", 15)),
        )

    @property
    def exercises_dir(self) -> Path:
        return self.root / "exercises"

    @property
    def examples_dir(self) -> Path:
        return self.root / "examples"

    @property
    def playground_dir(self) -> Path:
        return self.root / "playground"

    @property
    def cache_dir(self) -> Path:
        """Build-cache directory owned by the workshop app."""
        return self.root / "node_modules" / ".cache" / "kcdshop"

    @property
    def playground_info_path(self) -> Path:
        """Where the playground identity pointer is persisted."""
        return self.cache_dir / "playground.json"
