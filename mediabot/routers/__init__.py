"""API routers for mediabot."""

from .scan import router as scan_router
from .rename import router as rename_router
from .undo import router as undo_router
from .settings import router as settings_router
from .metadata import router as metadata_router

__all__ = ["scan_router", "rename_router", "undo_router", "settings_router", "metadata_router"]
