"""Configuration package for post_crawler.

Re-exports the settings accessor so callers can write::

    from post_crawler.config import get_settings
"""

from __future__ import annotations

from post_crawler.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
