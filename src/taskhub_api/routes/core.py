"""
Core routes that do not belong to a resource.
"""

from fastapi import APIRouter, Request, status

from taskhub_api.db import health_check_db

core_router = APIRouter()


@core_router.get("/health", status_code=status.HTTP_200_OK)
async def health(request: Request):
    db_ok = await health_check_db(request.app.state.engine)
    return {"status": "ok" if db_ok else "degraded", "database": db_ok}
