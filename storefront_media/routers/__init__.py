# Routers package
from . import images_router

__all__ = [
    "images_router",
]
