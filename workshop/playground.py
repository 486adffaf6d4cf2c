"""
Playground API routes for the workshop app.

The playground is a scratch copy of one exercise/example app that learners
edit freely. ``POST /api/playground`` re-syncs it from another app.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from .catalog import AppNotFoundError, get_playground_app, get_playground_app_name, require_app
from .context import WorkshopContext, get_workshop_context
from .live import notify_playground_set
from .playground_sync import PlaygroundHookError, set_playground

router = APIRouter()


class SetPlaygroundRequest(BaseModel):
    """Request model for syncing the playground."""

    app_name: str
    reset: bool = False


@router.get("/playground")
async def get_playground(ctx: WorkshopContext = Depends(get_workshop_context)):
    return {
        "app_name": await get_playground_app_name(ctx),
        "app": await get_playground_app(ctx),
    }


@router.post("/playground")
async def update_playground(request: SetPlaygroundRequest, ctx: WorkshopContext = Depends(get_workshop_context)):
    """Replace the playground's contents with a copy of ``app_name``."""
    try:
        app = await require_app(ctx, request.app_name)
    except AppNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    try:
        result = await set_playground(ctx, app.full_path, reset=request.reset)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PlaygroundHookError as e:
        raise HTTPException(status_code=500, detail=str(e))

    await notify_playground_set(result.app_name)
    return {"success": True, **result.to_dict()}
