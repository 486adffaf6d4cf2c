"""
App API routes for the workshop app.

- ``/api/apps``: the sorted app catalog, build errors and single apps
- ``/api/apps/{name}/start|stop|restart``: dev-server control
- ``/app/{name}/``: serves browser-type apps straight from disk
- ``/app/{name}/test/{file}``: in-browser test page for one test file
"""

from pathlib import Path
from typing import Optional
from urllib.parse import quote

import aiofiles
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import FileResponse, HTMLResponse, RedirectResponse

from .catalog import (
    AppNotFoundError,
    find_solution_dir,
    get_app_by_name,
    get_apps,
    get_exercise,
    get_workshop_title,
    require_app,
)
from .context import WorkshopContext, get_workshop_context
from .models import BrowserTest, ProblemApp, ScriptDev, SolutionApp, is_exercise_step_app
from .paths import name_from_path
from .shared.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()
app_router = APIRouter()

INDEX_SCRIPTS = ("index.js", "index.ts", "index.tsx")


async def _require_app(ctx: WorkshopContext, name: str):
    try:
        return await require_app(ctx, name)
    except AppNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/apps")
async def list_apps(ctx: WorkshopContext = Depends(get_workshop_context)):
    """List every app in catalog order."""
    apps = await get_apps(ctx)
    return {"apps": apps, "total": len(apps)}


@router.get("/apps/errors")
async def list_app_errors(ctx: WorkshopContext = Depends(get_workshop_context)):
    """Directories whose app failed to build during the last scan."""
    await get_apps(ctx)
    return {"errors": ctx.all_build_errors()}


@router.get("/apps/{name}")
async def get_app(name: str, ctx: WorkshopContext = Depends(get_workshop_context)):
    app = await _require_app(ctx, name)
    return {
        "app": app,
        "is_running": ctx.process_manager.is_running(app),
    }


# ============= Dev server control =============


async def _start_app(ctx: WorkshopContext, app):
    result = await ctx.process_manager.start(app)
    if result.running:
        await ctx.process_manager.wait_until_healthy(app)
        return {"status": "app-started", "port": result.port_number}
    if result.port_number:
        return {"status": "app-not-started", "error": result.status, "port": result.port_number}
    raise HTTPException(status_code=400, detail="Tried starting a server for an app that does not have one")


async def _stop_app(ctx: WorkshopContext, app):
    await ctx.process_manager.stop(app.name)
    return {"status": "app-stopped"}


async def _require_server_app(ctx: WorkshopContext, name: str):
    app = await _require_app(ctx, name)
    if not isinstance(app.dev, ScriptDev):
        raise HTTPException(status_code=400, detail=f'App "{name}" does not have a server')
    return app


@router.post("/apps/{name}/start")
async def start_app(name: str, ctx: WorkshopContext = Depends(get_workshop_context)):
    app = await _require_server_app(ctx, name)
    return await _start_app(ctx, app)


@router.post("/apps/{name}/stop")
async def stop_app(name: str, ctx: WorkshopContext = Depends(get_workshop_context)):
    app = await _require_server_app(ctx, name)
    return await _stop_app(ctx, app)


@router.post("/apps/{name}/restart")
async def restart_app(name: str, ctx: WorkshopContext = Depends(get_workshop_context)):
    app = await _require_server_app(ctx, name)
    await _stop_app(ctx, app)
    return await _start_app(ctx, app)


# ============= Static app serving =============


def _port_redirect(request: Request, port: int) -> RedirectResponse:
    host = request.url.hostname or "localhost"
    return RedirectResponse(f"{request.url.scheme}://{host}:{port}/")


def inject_base_href(html: str, name: str) -> str:
    if "<base href" in html:
        return html
    base_href = f'<base href="/app/{name}/" />'
    if "<head>" in html:
        return html.replace("<head>", f"<head>\n\t\t{base_href}", 1)
    if "<html>" in html:
        return html.replace("<html>", f"<html>\n\t<head>\n\t\t{base_href}\n\t</head>", 1)
    return html


async def _page_title(ctx: WorkshopContext, app) -> str:
    if not is_exercise_step_app(app):
        return " | ".join(["🏃", app.title])
    exercise = await get_exercise(ctx, app.exercise_number)
    parts = [
        "🏃💪" if isinstance(app, ProblemApp) else "🏃🏁" if isinstance(app, SolutionApp) else None,
        f"{app.step_number:02d}. {app.title}",
        f"{app.exercise_number:02d}. {exercise.title if exercise else 'Unknown'}",
        await get_workshop_title(ctx),
    ]
    return " | ".join(part for part in parts if part)


def render_app_shell(name: str, title: str, index_css: Optional[str], scripts) -> str:
    css_link = f'<link rel="stylesheet" href="{index_css}">' if index_css else ""
    script_tags = "\n\t\t".join(f'<script type="module" src="{script}"></script>' for script in scripts)
    return f"""<!DOCTYPE html>
<html>
	<head>
		<base href="/app/{name}/" />
		<meta charset="utf-8">
		<meta name="viewport" content="width=device-width, initial-scale=1">
		<title>{title}</title>
		{css_link}
	</head>
	<body>
		{script_tags}
	</body>
</html>
"""


@app_router.get("/app/{name}/")
async def serve_app(name: str, request: Request, ctx: WorkshopContext = Depends(get_workshop_context)):
    """Serve a browser app's ``index.html``, or a generated page around its index files."""
    app = await _require_app(ctx, name)
    if isinstance(app.dev, ScriptDev):
        return _port_redirect(request, app.dev.port_number)

    app_dir = Path(app.full_path)
    html_file = app_dir / "index.html"
    if html_file.is_file():
        async with aiofiles.open(html_file, "r", encoding="utf-8") as f:
            html = await f.read()
        return HTMLResponse(inject_base_href(html, name))

    index_files = sorted(child.name for child in app_dir.iterdir() if child.name.startswith("index."))
    scripts = [script for script in INDEX_SCRIPTS if script in index_files]
    if len(scripts) > 1:
        raise HTTPException(
            status_code=400,
            detail=f"Only one index.(js|ts|tsx) file is allowed, found {', '.join(scripts)}",
        )
    index_css = "index.css" if "index.css" in index_files else None
    title = await _page_title(ctx, app)
    return HTMLResponse(render_app_shell(name, title, index_css, scripts))


@app_router.get("/app/{name}/test/{test_file}")
async def serve_app_test(name: str, test_file: str, ctx: WorkshopContext = Depends(get_workshop_context)):
    """Page that runs one in-browser test file against the app."""
    app = await _require_app(ctx, name)
    if not isinstance(app.test, BrowserTest) or test_file not in app.test.test_files:
        raise HTTPException(status_code=404, detail=f'App "{name}" has no test file "{test_file}"')
    # test files live in the solution directory when there is one
    test_dir = await find_solution_dir(ctx, Path(app.full_path)) or Path(app.full_path)
    file_app_name = name_from_path(ctx.root, test_dir)
    script = f"{quote(test_file)}?fileAppName={quote(file_app_name)}"
    title = " | ".join(["🧪", test_file, app.title])
    return HTMLResponse(render_app_shell(name, title, None, [script]))


@app_router.get("/app/{name}/{file_path:path}")
async def serve_app_file(
    name: str,
    file_path: str,
    request: Request,
    fileAppName: Optional[str] = None,
    ctx: WorkshopContext = Depends(get_workshop_context),
):
    """Serve a file of a browser app, optionally resolved from another app's directory."""
    app = await get_app_by_name(ctx, name)
    file_app = await get_app_by_name(ctx, fileAppName) if fileAppName else app
    if app is None or file_app is None:
        raise HTTPException(
            status_code=404,
            detail=f'Apps with ids "{fileAppName}" (resolveDir) and "{name}" (app) for resource "{file_path}" not found',
        )
    if isinstance(app.dev, ScriptDev):
        return _port_redirect(request, app.dev.port_number)

    base_dir = Path(file_app.full_path).resolve()
    target = (base_dir / file_path).resolve()
    if base_dir not in target.parents or not target.is_file():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(str(target))
