"""Bannerworks - AI-assisted banner image generation."""

__version__ = "0.1.0"

from bannerworks.core.config import BannerworksConfig, config

__all__ = [
    "BannerworksConfig",
    "config",
]
