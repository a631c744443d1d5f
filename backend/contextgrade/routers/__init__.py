"""ContextGrade - API Routers"""
from .auth import router as auth_router
from .decisions import router as decisions_router

__all__ = [
    "auth_router",
    "decisions_router",
]
