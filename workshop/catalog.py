"""
App discovery and catalog assembly for the workshop app.

This module turns the workshop directory tree into typed app records:

- ``exercises/<NN>.<exercise>/<NN>.problem[.<subtitle>]`` -> ProblemApp
- ``exercises/<NN>.<exercise>/<NN>.solution[.<subtitle>]`` -> SolutionApp
- ``examples/<dir>`` -> ExampleApp
- ``playground`` -> PlaygroundApp (synced from another app)

Every app record is cached per directory; the whole sorted catalog is cached
under a single key. Cache entries are recomputed when the staleness tracker
has seen a change in the directory after the entry was created.
"""

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Union

import aiofiles
from pydantic import BaseModel, ValidationError

from .cache import Cache, cached_compute
from .context import WorkshopContext
from .mdx import compile_mdx_if_exists
from .models import (
    App,
    BrowserDev,
    BrowserTest,
    Exercise,
    ExerciseStep,
    ExampleApp,
    NoTest,
    PlaygroundApp,
    ProblemApp,
    ScriptDev,
    ScriptTest,
    SolutionApp,
    is_exercise_step_app,
)
from .package_json import get_pkg_prop, has_package_json
from .paths import (
    classify_step_dir,
    exercise_number_from_dir,
    name_from_path,
    parse_step_dir,
    path_from_name,
    relative_path,
)
from .shared.logger import get_logger

logger = get_logger(__name__)

APPS_CACHE_KEY = "apps"


class AppNotFoundError(LookupError):
    """Requested app or exercise does not exist in the catalog."""


@dataclass(frozen=True)
class AppBuildResult:
    """Outcome of building one app directory."""

    path: str
    app: Optional[Any] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ============= Filesystem helpers =============


def _scan_dirs(directory: Path) -> List[Path]:
    if not directory.is_dir():
        return []
    return sorted(
        (child for child in directory.iterdir() if child.is_dir() and child.name != "node_modules"),
        key=lambda child: child.name,
    )


def _scan_step_dirs(exercises_dir: Path, kind: str) -> List[Path]:
    return [
        step_dir
        for exercise_dir in _scan_dirs(exercises_dir)
        for step_dir in _scan_dirs(exercise_dir)
        if kind in step_dir.name
    ]


def _scan_test_files(directory: Path) -> List[str]:
    return sorted(item.name for item in directory.iterdir() if ".test." in item.name)


async def _in_executor(func, *args):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func, *args)


async def _list_dirs(directory: Path) -> List[Path]:
    return await _in_executor(_scan_dirs, directory)


async def _step_dirs(ctx: WorkshopContext, kind: str) -> List[Path]:
    """Directories under ``exercises/*/`` whose name mentions ``kind``."""
    return await _in_executor(_scan_step_dirs, ctx.config.exercises_dir, kind)


async def get_playground_app_name(ctx: WorkshopContext) -> Optional[str]:
    """Name of the app the playground was last synced from."""
    info_path = ctx.config.playground_info_path
    if not info_path.is_file():
        return None
    try:
        async with aiofiles.open(info_path, "r", encoding="utf-8") as f:
            data = json.loads(await f.read())
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Could not read playground info %s: %s", info_path, e)
        return None
    app_name = data.get("appName") if isinstance(data, dict) else None
    return app_name if isinstance(app_name, str) else None


async def _find_sibling_dir(ctx: WorkshopContext, full_path: Path, from_kind: str, to_kind: str) -> Optional[Path]:
    if full_path == ctx.config.playground_dir:
        app_name = await get_playground_app_name(ctx)
        if not app_name:
            return None
        source_dir = path_from_name(ctx.root, app_name)
        if source_dir == ctx.config.playground_dir:
            return None
        return await _find_sibling_dir(ctx, source_dir, from_kind, to_kind)

    info = parse_step_dir(full_path.name)
    if info is None or info.kind != from_kind:
        return None
    for sibling in await _list_dirs(full_path.parent):
        sibling_info = parse_step_dir(sibling.name)
        if sibling_info and sibling_info.kind == to_kind and sibling_info.step_number == info.step_number:
            return sibling
    return None


async def find_solution_dir(ctx: WorkshopContext, full_path: Path) -> Optional[Path]:
    """Solution directory matching a problem (or the playground's source)."""
    return await _find_sibling_dir(ctx, full_path, "problem", "solution")


async def find_problem_dir(ctx: WorkshopContext, full_path: Path) -> Optional[Path]:
    """Problem directory matching a solution (or the playground's source)."""
    return await _find_sibling_dir(ctx, full_path, "solution", "problem")


async def get_test_info(ctx: WorkshopContext, full_path: Path):
    if has_package_json(full_path):
        script = await get_pkg_prop(full_path, "kcd-workshop.scripts.test", "")
        if script:
            return ScriptTest(script=script)

    # browser tests live in the corresponding solution directory
    test_app_dir = await find_solution_dir(ctx, full_path) or full_path
    test_files = await _in_executor(_scan_test_files, test_app_dir)
    if test_files:
        name = name_from_path(ctx.root, full_path)
        return BrowserTest(base_url=f"/app/{name}/test/", test_files=test_files)
    return NoTest()


async def get_dev_info(ctx: WorkshopContext, full_path: Path, port_number: int):
    has_dev_script = has_package_json(full_path) and bool(await get_pkg_prop(full_path, "scripts.dev", ""))
    if has_dev_script:
        return ScriptDev(port_number=port_number, base_url=f"http://localhost:{port_number}/")
    name = name_from_path(ctx.root, full_path)
    return BrowserDev(base_url=f"/app/{name}/")


def _base_fields(ctx: WorkshopContext, full_path: Path, compiled) -> Dict[str, Any]:
    name = name_from_path(ctx.root, full_path)
    return {
        "name": name,
        "title": (compiled.title if compiled and compiled.title else name),
        "dir_name": full_path.name,
        "full_path": str(full_path),
        "relative_path": relative_path(ctx.root, full_path),
        "instructions_code": compiled.code if compiled else None,
        "epic_video_embeds": compiled.epic_video_embeds if compiled else None,
    }


# ============= App builders =============


def _step_coordinates(full_path: Path, kind: str):
    exercise_number = exercise_number_from_dir(full_path.parent.name)
    if not exercise_number:
        logger.info('Ignoring "%s": parent directory has no exercise number', full_path)
        return None
    info = classify_step_dir(full_path.name)
    if info is None or info.kind != kind:
        return None
    return exercise_number, info.step_number


def _step_port(base: int, exercise_number: int, step_number: int) -> int:
    return base + (exercise_number - 1) * 10 + step_number


async def build_problem_app(ctx: WorkshopContext, full_path: Path) -> Optional[ProblemApp]:
    coordinates = _step_coordinates(full_path, "problem")
    if coordinates is None:
        return None
    exercise_number, step_number = coordinates
    port_number = _step_port(ctx.config.problem_port_base, exercise_number, step_number)

    compiled = await compile_mdx_if_exists(ctx.compiler, full_path / "README.mdx")
    solution_dir = await find_solution_dir(ctx, full_path)
    test = await get_test_info(ctx, full_path)
    return ProblemApp(
        **_base_fields(ctx, full_path, compiled),
        exercise_number=exercise_number,
        step_number=step_number,
        solution_name=name_from_path(ctx.root, solution_dir) if solution_dir else None,
        test=test,
        dev=await get_dev_info(ctx, full_path, port_number),
    )


async def build_solution_app(ctx: WorkshopContext, full_path: Path) -> Optional[SolutionApp]:
    coordinates = _step_coordinates(full_path, "solution")
    if coordinates is None:
        return None
    exercise_number, step_number = coordinates
    port_number = _step_port(ctx.config.solution_port_base, exercise_number, step_number)

    compiled = await compile_mdx_if_exists(ctx.compiler, full_path / "README.mdx")
    problem_dir = await find_problem_dir(ctx, full_path)
    test = await get_test_info(ctx, full_path)
    return SolutionApp(
        **_base_fields(ctx, full_path, compiled),
        exercise_number=exercise_number,
        step_number=step_number,
        problem_name=name_from_path(ctx.root, problem_dir) if problem_dir else None,
        test=test,
        dev=await get_dev_info(ctx, full_path, port_number),
    )


async def build_example_app(ctx: WorkshopContext, full_path: Path, index: int) -> ExampleApp:
    compiled = await compile_mdx_if_exists(ctx.compiler, full_path / "README.mdx")
    return ExampleApp(
        **_base_fields(ctx, full_path, compiled),
        test=await get_test_info(ctx, full_path),
        dev=await get_dev_info(ctx, full_path, ctx.config.example_port_base + index),
    )


async def build_playground_app(ctx: WorkshopContext, app_name: Optional[str]) -> Optional[PlaygroundApp]:
    playground_dir = ctx.config.playground_dir
    if not playground_dir.is_dir() or not app_name:
        return None
    compiled = await compile_mdx_if_exists(ctx.compiler, playground_dir / "README.mdx")
    return PlaygroundApp(
        **_base_fields(ctx, playground_dir, compiled),
        app_name=app_name,
        test=await get_test_info(ctx, playground_dir),
        dev=await get_dev_info(ctx, playground_dir, ctx.config.playground_port),
    )


async def _cached_build(
    ctx: WorkshopContext,
    cache: Cache,
    key: str,
    directory: Path,
    build: Callable[[], Awaitable[Any]],
) -> AppBuildResult:
    """Build one app through its cache, capturing any failure in the result."""

    async def compute() -> AppBuildResult:
        try:
            return AppBuildResult(path=str(directory), app=await build())
        except Exception as e:
            logger.warning("Failed to build app in %s: %s", directory, e)
            return AppBuildResult(path=str(directory), error=f"{type(e).__name__}: {e}")

    return await cached_compute(
        key,
        compute,
        cache=cache,
        ttl=ctx.config.apps_ttl,
        swr=ctx.config.apps_swr,
        force_fresh=ctx.tracker.is_stale(directory, cache.get(key)),
        background=ctx.background,
        clock=ctx.clock,
    )


def _collect(ctx: WorkshopContext, kind: str, results: List[AppBuildResult]) -> list:
    ctx.build_errors[kind] = {result.path: result.error for result in results if not result.ok}
    return [result.app for result in results if result.app is not None]


async def get_problem_apps(ctx: WorkshopContext) -> List[ProblemApp]:
    cache = ctx.caches.problem
    results = await asyncio.gather(*(
        _cached_build(ctx, cache, str(step_dir), step_dir, lambda step_dir=step_dir: build_problem_app(ctx, step_dir))
        for step_dir in await _step_dirs(ctx, "problem")
    ))
    return _collect(ctx, "problem", list(results))


async def get_solution_apps(ctx: WorkshopContext) -> List[SolutionApp]:
    cache = ctx.caches.solution
    results = await asyncio.gather(*(
        _cached_build(ctx, cache, str(step_dir), step_dir, lambda step_dir=step_dir: build_solution_app(ctx, step_dir))
        for step_dir in await _step_dirs(ctx, "solution")
    ))
    return _collect(ctx, "solution", list(results))


async def get_example_apps(ctx: WorkshopContext) -> List[ExampleApp]:
    cache = ctx.caches.example
    example_dirs = await _list_dirs(ctx.config.examples_dir)
    results = await asyncio.gather(*(
        _cached_build(
            ctx, cache, f"{example_dir}-{index}", example_dir,
            lambda example_dir=example_dir, index=index: build_example_app(ctx, example_dir, index),
        )
        for index, example_dir in enumerate(example_dirs)
    ))
    return _collect(ctx, "example", list(results))


async def get_playground_app(ctx: WorkshopContext) -> Optional[PlaygroundApp]:
    app_name = await get_playground_app_name(ctx)
    result = await _cached_build(
        ctx,
        ctx.caches.playground,
        f"playground-{app_name}",
        ctx.config.playground_dir,
        lambda: build_playground_app(ctx, app_name),
    )
    apps = _collect(ctx, "playground", [result])
    return apps[0] if apps else None


# ============= Catalog =============

_KIND_ORDER = {"problem": 0, "solution": 1}


def app_sort_key(app) -> tuple:
    """Exercise steps by (exercise, step, problem before solution), then
    examples by name, then the playground."""
    if isinstance(app, PlaygroundApp):
        return (2, 0, 0, 0, app.name)
    if isinstance(app, ExampleApp):
        return (1, 0, 0, 0, app.name)
    return (0, app.exercise_number, app.step_number, _KIND_ORDER[app.type], app.name)


def sort_apps(apps: List[Any]) -> List[Any]:
    return sorted(apps, key=app_sort_key)


async def _assemble_apps(ctx: WorkshopContext) -> List[Any]:
    playground_app = await get_playground_app(ctx)
    problem_apps = await get_problem_apps(ctx)
    solution_apps = await get_solution_apps(ctx)
    example_apps = await get_example_apps(ctx)
    apps = [app for app in [playground_app, *problem_apps, *solution_apps, *example_apps] if app is not None]
    return sort_apps(apps)


async def get_apps(ctx: WorkshopContext, force_fresh: Optional[bool] = None) -> List[App]:
    """The full sorted catalog, shared by every caller through one cache key."""
    cache = ctx.caches.apps
    if force_fresh is None:
        force_fresh = ctx.tracker.is_any_stale(cache.get(APPS_CACHE_KEY))
    apps = await cached_compute(
        APPS_CACHE_KEY,
        lambda: _assemble_apps(ctx),
        cache=cache,
        ttl=ctx.config.apps_ttl,
        swr=ctx.config.apps_swr,
        force_fresh=force_fresh,
        background=ctx.background,
        clock=ctx.clock,
    )
    return list(apps)


async def get_app_by_name(ctx: WorkshopContext, name: str) -> Optional[App]:
    for app in await get_apps(ctx):
        if app.name == name:
            return app
    return None


async def require_app(ctx: WorkshopContext, name: str) -> App:
    app = await get_app_by_name(ctx, name)
    if app is None:
        raise AppNotFoundError(f'App "{name}" not found')
    return app


# ============= Exercises =============


async def get_exercises(ctx: WorkshopContext) -> List[Exercise]:
    apps = await get_apps(ctx)
    exercises = []
    for exercise_dir in await _list_dirs(ctx.config.exercises_dir):
        exercise_number = exercise_number_from_dir(exercise_dir.name)
        if not exercise_number:
            continue
        compiled_readme = await compile_mdx_if_exists(ctx.compiler, exercise_dir / "README.mdx")
        compiled_finished = await compile_mdx_if_exists(ctx.compiler, exercise_dir / "FINISHED.mdx")

        problems = [app for app in apps if isinstance(app, ProblemApp) and app.exercise_number == exercise_number]
        solutions = [app for app in apps if isinstance(app, SolutionApp) and app.exercise_number == exercise_number]

        by_number: Dict[int, Dict[str, Any]] = {}
        for app in problems + solutions:
            by_number.setdefault(app.step_number, {"step_number": app.step_number})[app.type] = app
        steps: List[Optional[ExerciseStep]] = [None] * max(by_number, default=0)
        for number, fields in by_number.items():
            steps[number - 1] = ExerciseStep(**fields)

        exercises.append(Exercise(
            exercise_number=exercise_number,
            dir_name=exercise_dir.name,
            title=(compiled_readme.title if compiled_readme and compiled_readme.title else exercise_dir.name),
            instructions_code=compiled_readme.code if compiled_readme else None,
            finished_code=compiled_finished.code if compiled_finished else None,
            instructions_epic_video_embeds=compiled_readme.epic_video_embeds if compiled_readme else None,
            finished_epic_video_embeds=compiled_finished.epic_video_embeds if compiled_finished else None,
            steps=steps,
            problems=problems,
            solutions=solutions,
        ))
    return exercises


async def get_exercise(ctx: WorkshopContext, exercise_number: Union[int, str]) -> Optional[Exercise]:
    try:
        exercise_number = int(exercise_number)
    except (TypeError, ValueError):
        return None
    for exercise in await get_exercises(ctx):
        if exercise.exercise_number == exercise_number:
            return exercise
    return None


async def require_exercise(ctx: WorkshopContext, exercise_number: Union[int, str]) -> Exercise:
    exercise = await get_exercise(ctx, exercise_number)
    if exercise is None:
        raise AppNotFoundError(f"Exercise {exercise_number} not found")
    return exercise


class ExerciseAppParams(BaseModel):
    type: Literal["problem", "solution"]
    exercise_number: int
    step_number: int


async def get_exercise_app(ctx: WorkshopContext, params: Dict[str, Any]):
    """Find the problem/solution app for route-style params, e.g.
    ``{"type": "problem", "exercise_number": "01", "step_number": "2"}``."""
    try:
        parsed = ExerciseAppParams.model_validate(params)
    except ValidationError:
        return None
    for app in await get_apps(ctx):
        if (
            is_exercise_step_app(app)
            and app.type == parsed.type
            and app.exercise_number == parsed.exercise_number
            and app.step_number == parsed.step_number
        ):
            return app
    return None


async def require_exercise_app(ctx: WorkshopContext, params: Dict[str, Any]):
    app = await get_exercise_app(ctx, params)
    if app is None:
        raise AppNotFoundError(f"No exercise app for {params}")
    return app


async def _adjacent_exercise_app(ctx: WorkshopContext, app, offset: int):
    step_apps = [candidate for candidate in await get_apps(ctx) if is_exercise_step_app(candidate)]
    names = [candidate.name for candidate in step_apps]
    if app.name not in names:
        raise AppNotFoundError(f"Could not find app {app.name}")
    index = names.index(app.name) + offset
    if 0 <= index < len(step_apps):
        return step_apps[index]
    return None


async def get_next_exercise_app(ctx: WorkshopContext, app):
    return await _adjacent_exercise_app(ctx, app, 1)


async def get_prev_exercise_app(ctx: WorkshopContext, app):
    return await _adjacent_exercise_app(ctx, app, -1)


def get_app_page_route(app) -> str:
    return f"/{app.exercise_number:02d}/{app.step_number:02d}/{app.type}"


# ============= Workshop metadata =============


async def get_workshop_title(ctx: WorkshopContext) -> str:
    title = await get_pkg_prop(ctx.root, "kcd-workshop.title", None)
    if not title:
        raise RuntimeError(
            'Workshop title not found. Make sure the root of the workshop has "kcd-workshop" '
            f'with a "title" property in the package.json. {ctx.root}'
        )
    return title


async def get_epic_workshop_slug(ctx: WorkshopContext) -> Optional[str]:
    return await get_pkg_prop(ctx.root, "kcd-workshop.epicWorkshopSlug", None) or None


async def _compile_workshop_file(ctx: WorkshopContext, file_name: str, relative: str) -> Dict[str, Any]:
    file_path = ctx.config.exercises_dir / file_name
    try:
        compiled = await ctx.compiler.compile(file_path)
        result = {
            "status": "success",
            "code": compiled.code,
            "title": compiled.title,
            "epic_video_embeds": compiled.epic_video_embeds,
        }
    except Exception as e:
        logger.error("There was an error compiling %s: %s", file_path, e)
        result = {"status": "error", "error": str(e) or type(e).__name__}
    return {"compiled": result, "file": str(file_path), "relative_path": relative}


async def get_workshop_instructions(ctx: WorkshopContext) -> Dict[str, Any]:
    return await _compile_workshop_file(ctx, "README.mdx", "exercises")


async def get_workshop_finished(ctx: WorkshopContext) -> Dict[str, Any]:
    return await _compile_workshop_file(ctx, "FINISHED.mdx", "exercises/finished.mdx")


# ============= Change tracking =============


async def handle_file_change(ctx: WorkshopContext, event: str, file_path: Union[str, Path]) -> Optional[str]:
    """Mark the app containing ``file_path`` as touched.

    Changes outside every known app touch the workshop root, so the catalog
    itself is rebuilt (new app directories appear this way). Returns the
    name of the touched app, if any.
    """
    file_path = Path(file_path)
    for app in await get_apps(ctx):
        app_dir = Path(app.full_path)
        if file_path == app_dir or app_dir in file_path.parents:
            ctx.tracker.record_touched(app_dir)
            return app.name
    ctx.tracker.record_touched(ctx.root)
    return None


def init(ctx: WorkshopContext, on_app_change: Optional[Callable[[str, str, str], Awaitable[None]]] = None) -> None:
    """Subscribe the staleness tracker to the context's file watcher.

    ``on_app_change(app_name, event, file_path)`` is awaited after a change
    was attributed to a known app.
    """
    if ctx.watcher is None:
        return

    async def on_change(event: str, file_path: str) -> None:
        app_name = await handle_file_change(ctx, event, file_path)
        if app_name and on_app_change is not None:
            await on_app_change(app_name, event, file_path)

    ctx.watcher.on_change(on_change)
