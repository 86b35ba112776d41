from fastapi import APIRouter, FastAPI

from .admin import router as admin_router
from .cron import router as cron_router


def include_modular_routers(app: FastAPI) -> None:
    app.include_router(admin_router, tags=["admin"])
    app.include_router(cron_router, tags=["cron"])


__all__ = ["include_modular_routers", "APIRouter"]
