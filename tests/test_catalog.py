"""
Tests for app discovery, the sorted catalog and exercise grouping.
"""

import threading
from unittest.mock import patch

import pytest

from workshop import catalog
from workshop.catalog import (
    AppNotFoundError,
    get_app_by_name,
    get_app_page_route,
    get_apps,
    get_exercise,
    get_exercise_app,
    get_exercises,
    get_next_exercise_app,
    get_prev_exercise_app,
    handle_file_change,
    require_app,
)
from workshop.models import BrowserDev, BrowserTest, ExampleApp, NoTest, ProblemApp, ScriptDev, ScriptTest, SolutionApp

from conftest import make_app_dir, write_json

SEP = "__sep__"
P1 = SEP.join(["exercises", "01.first", "01.problem.hello"])
S1 = SEP.join(["exercises", "01.first", "01.solution.hello"])
P2 = SEP.join(["exercises", "01.first", "02.problem.two"])
S2 = SEP.join(["exercises", "01.first", "02.solution.two"])
LONELY = SEP.join(["exercises", "02.second", "01.problem"])
EXAMPLE_A = SEP.join(["examples", "a"])
EXAMPLE_B = SEP.join(["examples", "b"])


class TestCatalog:
    """get_apps over the fixture workshop."""

    @pytest.mark.asyncio
    async def test_sorted_order(self, ctx):
        apps = await get_apps(ctx)
        assert [app.name for app in apps] == [P1, S1, P2, S2, LONELY, EXAMPLE_A, EXAMPLE_B]

    @pytest.mark.asyncio
    async def test_problem_app_fields(self, ctx, workshop_root):
        app = await require_app(ctx, P1)
        assert isinstance(app, ProblemApp)
        assert app.title == "Say Hello"
        assert app.exercise_number == 1
        assert app.step_number == 1
        assert app.solution_name == S1
        assert app.dir_name == "01.problem.hello"
        assert app.relative_path == "exercises/01.first/01.problem.hello"
        assert app.full_path == str(workshop_root / "exercises" / "01.first" / "01.problem.hello")
        assert app.epic_video_embeds == ["https://example.com/hello"]
        assert app.dev == BrowserDev(base_url=f"/app/{P1}/")

    @pytest.mark.asyncio
    async def test_problem_uses_solution_browser_tests(self, ctx):
        app = await require_app(ctx, P1)
        assert app.test == BrowserTest(base_url=f"/app/{P1}/test/", test_files=["index.test.js"])

    @pytest.mark.asyncio
    async def test_solution_app_links_back(self, ctx):
        app = await require_app(ctx, S1)
        assert isinstance(app, SolutionApp)
        assert app.problem_name == P1
        assert app.title == "Say Hello (solved)"

    @pytest.mark.asyncio
    async def test_dangling_solution_reference_is_none(self, ctx):
        app = await require_app(ctx, LONELY)
        assert app.solution_name is None
        assert app.test == NoTest()

    @pytest.mark.asyncio
    async def test_title_falls_back_to_name(self, ctx):
        app = await require_app(ctx, P2)
        assert app.title == P2
        assert app.instructions_code is None

    @pytest.mark.asyncio
    async def test_examples(self, ctx):
        apps = [app for app in await get_apps(ctx) if isinstance(app, ExampleApp)]
        assert [app.name for app in apps] == [EXAMPLE_A, EXAMPLE_B]

    @pytest.mark.asyncio
    async def test_script_dev_ports(self, ctx, workshop_root):
        dev_pkg = {"scripts": {"dev": "vite"}, "kcd-workshop": {"scripts": {"test": "vitest"}}}
        write_json(workshop_root / "exercises" / "02.second" / "01.problem" / "package.json", dev_pkg)
        write_json(workshop_root / "exercises" / "01.first" / "02.solution.two" / "package.json", dev_pkg)
        write_json(workshop_root / "examples" / "b" / "package.json", dev_pkg)

        lonely = await require_app(ctx, LONELY)
        assert lonely.dev == ScriptDev(port_number=6011, base_url="http://localhost:6011/")
        assert lonely.test == ScriptTest(script="vitest")
        assert (await require_app(ctx, S2)).dev.port_number == 7002
        assert (await require_app(ctx, EXAMPLE_B)).dev.port_number == 8001

    @pytest.mark.asyncio
    async def test_serializes_with_camel_case(self, ctx):
        data = (await require_app(ctx, P1)).model_dump(by_alias=True)
        assert data["type"] == "problem"
        assert data["exerciseNumber"] == 1
        assert data["solutionName"] == S1
        assert data["dev"] == {"type": "browser", "baseUrl": f"/app/{P1}/"}

    @pytest.mark.asyncio
    async def test_ignores_non_matching_directories(self, ctx, workshop_root):
        make_app_dir(workshop_root / "exercises" / "01.first" / "problem-notes", {"a.txt": "x"})
        make_app_dir(workshop_root / "exercises" / "intro" / "01.problem", {"a.txt": "x"})
        names = [app.name for app in await get_apps(ctx)]
        assert len(names) == 7
        assert ctx.all_build_errors() == []

    @pytest.mark.asyncio
    async def test_broken_app_is_reported_not_fatal(self, ctx, workshop_root):
        broken = make_app_dir(workshop_root / "exercises" / "01.first" / "03.problem.broken")
        (broken / "package.json").write_text("{not json", encoding="utf-8")

        names = [app.name for app in await get_apps(ctx)]
        assert P1 in names
        assert not any("broken" in name for name in names)

        errors = ctx.all_build_errors()
        assert len(errors) == 1
        assert errors[0]["kind"] == "problem"
        assert errors[0]["path"] == str(broken)
        assert "PackageJsonError" in errors[0]["error"]

    @pytest.mark.asyncio
    async def test_missing_app_lookup(self, ctx):
        assert await get_app_by_name(ctx, "nope") is None
        with pytest.raises(AppNotFoundError):
            await require_app(ctx, "nope")


class TestCaching:
    """Cached records and change-driven invalidation."""

    @pytest.mark.asyncio
    async def test_repeated_calls_share_records(self, ctx):
        first = await get_apps(ctx)
        second = await get_apps(ctx)
        assert first == second
        assert all(a is b for a, b in zip(first, second))

    @pytest.mark.asyncio
    async def test_returned_list_is_a_copy(self, ctx):
        apps = await get_apps(ctx)
        apps.clear()
        assert len(await get_apps(ctx)) == 7

    @pytest.mark.asyncio
    async def test_new_files_invisible_until_touched(self, ctx, workshop_root):
        await get_apps(ctx)
        new_dir = make_app_dir(workshop_root / "exercises" / "01.first" / "03.problem.three", {"index.js": ""})
        assert await get_app_by_name(ctx, SEP.join(["exercises", "01.first", "03.problem.three"])) is None

        assert await handle_file_change(ctx, "added", str(new_dir / "index.js")) is None
        assert await get_app_by_name(ctx, SEP.join(["exercises", "01.first", "03.problem.three"])) is not None

    @pytest.mark.asyncio
    async def test_touching_an_app_rebuilds_only_that_app(self, ctx, workshop_root):
        before = {app.name: app for app in await get_apps(ctx)}
        readme = workshop_root / "exercises" / "01.first" / "01.problem.hello" / "README.mdx"
        readme.write_text("# Say Hi\n", encoding="utf-8")

        assert await handle_file_change(ctx, "modified", str(readme)) == P1

        after = {app.name: app for app in await get_apps(ctx)}
        assert after[P1].title == "Say Hi"
        assert after[S1] is before[S1]
        assert after[EXAMPLE_A] is before[EXAMPLE_A]

    @pytest.mark.asyncio
    async def test_directory_scans_run_off_the_event_loop(self, ctx):
        threads = []
        real_scan = catalog._scan_dirs

        def scan(directory):
            threads.append(threading.current_thread())
            return real_scan(directory)

        with patch.object(catalog, "_scan_dirs", side_effect=scan):
            await get_apps(ctx)
        assert threads
        assert threading.main_thread() not in threads

    @pytest.mark.asyncio
    async def test_init_without_watcher_is_noop(self, ctx):
        catalog.init(ctx)
        assert ctx.watcher is None


class TestExercises:
    """Exercise grouping."""

    @pytest.mark.asyncio
    async def test_exercise_structure(self, ctx):
        exercises = await get_exercises(ctx)
        assert [exercise.exercise_number for exercise in exercises] == [1, 2]

        first = exercises[0]
        assert first.title == "First Exercise"
        assert [step.step_number for step in first.steps] == [1, 2]
        assert first.steps[0].problem.name == P1
        assert first.steps[0].solution.name == S1
        assert [app.name for app in first.problems] == [P1, P2]

    @pytest.mark.asyncio
    async def test_step_with_one_side(self, ctx):
        second = await get_exercise(ctx, 2)
        assert second.title == "Second Exercise"
        assert len(second.steps) == 1
        assert second.steps[0].problem.name == LONELY
        assert second.steps[0].solution is None
        assert second.finished_code is None

    @pytest.mark.asyncio
    async def test_steps_indexed_by_step_number(self, ctx, workshop_root):
        make_app_dir(workshop_root / "exercises" / "02.second" / "03.problem.later", {"index.js": "// later\n"})
        second = await get_exercise(ctx, 2)
        assert len(second.steps) == 3
        assert second.steps[0].problem.name == LONELY
        assert second.steps[1] is None
        assert second.steps[2].step_number == 3
        assert second.steps[2].problem.dir_name == "03.problem.later"

    @pytest.mark.asyncio
    async def test_unknown_exercise(self, ctx):
        assert await get_exercise(ctx, 9) is None
        assert await get_exercise(ctx, "abc") is None


class TestLookupsAndNavigation:
    """Exercise-step lookups and next/previous navigation."""

    @pytest.mark.asyncio
    async def test_get_exercise_app_coerces_params(self, ctx):
        app = await get_exercise_app(ctx, {"type": "solution", "exercise_number": "1", "step_number": "2"})
        assert app.name == S2

    @pytest.mark.asyncio
    async def test_get_exercise_app_invalid_params(self, ctx):
        assert await get_exercise_app(ctx, {"type": "example", "exercise_number": 1, "step_number": 1}) is None
        assert await get_exercise_app(ctx, {"type": "problem", "exercise_number": "x", "step_number": 1}) is None
        assert await get_exercise_app(ctx, {"type": "problem", "exercise_number": 5, "step_number": 1}) is None

    @pytest.mark.asyncio
    async def test_next_and_prev(self, ctx):
        p1 = await require_app(ctx, P1)
        lonely = await require_app(ctx, LONELY)
        assert (await get_next_exercise_app(ctx, p1)).name == S1
        assert await get_prev_exercise_app(ctx, p1) is None
        assert (await get_prev_exercise_app(ctx, lonely)).name == S2
        assert await get_next_exercise_app(ctx, lonely) is None

    @pytest.mark.asyncio
    async def test_navigation_from_unknown_app(self, ctx):
        example = await require_app(ctx, EXAMPLE_A)
        with pytest.raises(AppNotFoundError):
            await get_next_exercise_app(ctx, example)

    @pytest.mark.asyncio
    async def test_page_route(self, ctx):
        assert get_app_page_route(await require_app(ctx, S2)) == "/01/02/solution"


class TestWorkshopMetadata:
    """Title, slug and workshop-level instructions."""

    @pytest.mark.asyncio
    async def test_title_and_slug(self, ctx):
        assert await catalog.get_workshop_title(ctx) == "Test Workshop"
        assert await catalog.get_epic_workshop_slug(ctx) == "test-workshop"

    @pytest.mark.asyncio
    async def test_missing_title(self, ctx, workshop_root):
        write_json(workshop_root / "package.json", {"name": "untitled"})
        with pytest.raises(RuntimeError, match="Workshop title not found"):
            await catalog.get_workshop_title(ctx)
        assert await catalog.get_epic_workshop_slug(ctx) is None

    @pytest.mark.asyncio
    async def test_instructions(self, ctx, workshop_root):
        result = await catalog.get_workshop_instructions(ctx)
        assert result["compiled"]["status"] == "success"
        assert result["compiled"]["title"] == "Welcome"
        assert result["file"] == str(workshop_root / "exercises" / "README.mdx")
        assert result["relative_path"] == "exercises"

    @pytest.mark.asyncio
    async def test_missing_finished_page_reports_error(self, ctx, workshop_root):
        (workshop_root / "exercises" / "FINISHED.mdx").unlink()
        result = await catalog.get_workshop_finished(ctx)
        assert result["compiled"]["status"] == "error"
        assert result["relative_path"] == "exercises/finished.mdx"
