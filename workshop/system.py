"""
System API routes for the workshop app.

Health and workshop-level metadata (title, instructions, finished page).
"""

from fastapi import APIRouter, Depends, HTTPException

from .catalog import (
    get_epic_workshop_slug,
    get_workshop_finished,
    get_workshop_instructions,
    get_workshop_title,
)
from .context import WorkshopContext, get_workshop_context

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "message": "Workshop app is running",
    }


@router.get("/workshop")
async def workshop_info(ctx: WorkshopContext = Depends(get_workshop_context)):
    try:
        title = await get_workshop_title(ctx)
    except RuntimeError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {
        "title": title,
        "epic_workshop_slug": await get_epic_workshop_slug(ctx),
        "root": str(ctx.root),
    }


@router.get("/workshop/instructions")
async def workshop_instructions(ctx: WorkshopContext = Depends(get_workshop_context)):
    return await get_workshop_instructions(ctx)


@router.get("/workshop/finished")
async def workshop_finished(ctx: WorkshopContext = Depends(get_workshop_context)):
    return await get_workshop_finished(ctx)
