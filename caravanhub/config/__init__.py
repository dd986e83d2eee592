"""Application configuration."""

from caravanhub.config.settings import DEFAULT_PLACEHOLDER, Settings, SiteConfig

__all__ = ["DEFAULT_PLACEHOLDER", "Settings", "SiteConfig"]
