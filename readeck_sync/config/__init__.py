from __future__ import annotations

from .integrations import DEFAULT_FRONTMATTER_FIELDS, ReadeckConfig, SyncMode
from .settings import AppConfig, RuntimeConfig, Settings, load_config, require_api_url

__all__ = [
    "DEFAULT_FRONTMATTER_FIELDS",
    "AppConfig",
    "ReadeckConfig",
    "RuntimeConfig",
    "Settings",
    "SyncMode",
    "load_config",
    "require_api_url",
]
