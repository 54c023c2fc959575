# Models package (re-export feature modules for stable imports)
from .media.image import ImageAsset

__all__ = [
    "ImageAsset",
]
