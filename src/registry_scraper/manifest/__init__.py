"""Manifest normalization into the uniform Platform/Manifest/Layer model."""

from .models import Config, HistoryEntry, Layer, Manifest, Platform, SchemaKind
from .normalizer import (
    ManifestLoader,
    collapse_layers,
    detect_schema,
    normalize,
    parse_history,
    parse_timestamp,
)

__all__ = [
    "Config",
    "HistoryEntry",
    "Layer",
    "Manifest",
    "ManifestLoader",
    "Platform",
    "SchemaKind",
    "collapse_layers",
    "detect_schema",
    "normalize",
    "parse_history",
    "parse_timestamp",
]
