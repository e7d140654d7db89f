"""
Health check route (no authentication).
"""

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    return {
        "status": "ok",
        "database_configured": getattr(request.app.state, "database_configured", None),
    }
