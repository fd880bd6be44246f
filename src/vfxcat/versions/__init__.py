"""Version ordering and resolution."""

from .resolver import default_version, order_versions, resolve, resolve_or_default, version_sort_key

__all__ = ["default_version", "order_versions", "resolve", "resolve_or_default", "version_sort_key"]
