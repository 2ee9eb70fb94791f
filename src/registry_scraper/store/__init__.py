"""Persistent store of scraped images."""

from .models import Base, ImageDB, LayerDB, LayerPositionDB, PlatformDB, TagDB
from .store import Store, Transaction

__all__ = [
    "Base",
    "ImageDB",
    "LayerDB",
    "LayerPositionDB",
    "PlatformDB",
    "Store",
    "TagDB",
    "Transaction",
]
