"""Configuration package for the Blip Soroban Metrics API"""

from .settings import get_settings, clear_settings_cache, Settings

__all__ = ["get_settings", "clear_settings_cache", "Settings"]
