"""
Exercise API routes for the workshop app.
"""

from fastapi import APIRouter, Depends, HTTPException

from .catalog import (
    AppNotFoundError,
    get_app_page_route,
    get_exercises,
    get_next_exercise_app,
    get_prev_exercise_app,
    require_exercise,
    require_exercise_app,
)
from .context import WorkshopContext, get_workshop_context

router = APIRouter()


@router.get("/exercises")
async def list_exercises(ctx: WorkshopContext = Depends(get_workshop_context)):
    exercises = await get_exercises(ctx)
    return {"exercises": exercises, "total": len(exercises)}


@router.get("/exercises/{exercise_number}")
async def get_exercise(exercise_number: str, ctx: WorkshopContext = Depends(get_workshop_context)):
    try:
        exercise = await require_exercise(ctx, exercise_number)
    except AppNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"exercise": exercise}


@router.get("/exercises/{exercise_number}/{step_number}/{type}")
async def get_exercise_step(
    exercise_number: str,
    step_number: str,
    type: str,
    ctx: WorkshopContext = Depends(get_workshop_context),
):
    """A problem or solution app with the page routes of its neighbours."""
    params = {"type": type, "exercise_number": exercise_number, "step_number": step_number}
    try:
        app = await require_exercise_app(ctx, params)
        next_app = await get_next_exercise_app(ctx, app)
        prev_app = await get_prev_exercise_app(ctx, app)
    except AppNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {
        "app": app,
        "route": get_app_page_route(app),
        "next": get_app_page_route(next_app) if next_app else None,
        "prev": get_app_page_route(prev_app) if prev_app else None,
    }
