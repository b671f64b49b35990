"""Ranked-source asset loading."""

from passingplates.infrastructure.assets.loader import (
    AssetFetcher,
    AssetLoadError,
    SourceResolver,
    build_candidate_list,
    fetch_with_fallback,
    is_remote,
)

__all__ = [
    "AssetFetcher",
    "AssetLoadError",
    "SourceResolver",
    "build_candidate_list",
    "fetch_with_fallback",
    "is_remote",
]
