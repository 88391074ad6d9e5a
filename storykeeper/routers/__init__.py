# storykeeper/routers/__init__.py
"""
API routers for v1 endpoints.
"""

from storykeeper.routers.stories import router as stories_router

__all__ = ["stories_router"]
