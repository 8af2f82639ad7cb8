"""
Module: config
Description: Package initialization for application configuration.
"""

from .settings import Settings, settings

__all__ = ["Settings", "settings"]
