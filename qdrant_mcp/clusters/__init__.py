"""Cluster profiles, dynamic registration and client caching."""

from .registry import (
    DEFAULT_PROFILE_NAME,
    ClusterProfile,
    ClusterRegistry,
    derive_stable_name,
    dynamic_name_for_url,
    normalize_url,
)

__all__ = [
    "DEFAULT_PROFILE_NAME",
    "ClusterProfile",
    "ClusterRegistry",
    "derive_stable_name",
    "dynamic_name_for_url",
    "normalize_url",
]
