"""
Workshop engine for the workshop app.

Discovers exercise, example and playground apps from a workshop directory,
caches them with change-driven invalidation, and keeps the playground in
sync with a chosen app.
"""

from .catalog import (
    AppBuildResult,
    AppNotFoundError,
    get_app_by_name,
    get_apps,
    get_exercise,
    get_exercise_app,
    get_exercises,
    get_playground_app_name,
)
from .config import WorkshopConfig
from .context import WorkshopContext, create_context
from .paths import AppNameError
from .playground_sync import PlaygroundHookError, PlaygroundSyncResult, set_playground

__all__ = [
    "AppBuildResult",
    "AppNameError",
    "AppNotFoundError",
    "PlaygroundHookError",
    "PlaygroundSyncResult",
    "WorkshopConfig",
    "WorkshopContext",
    "create_context",
    "get_app_by_name",
    "get_apps",
    "get_exercise",
    "get_exercise_app",
    "get_exercises",
    "get_playground_app_name",
    "set_playground",
]
