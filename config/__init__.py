"""Configuration module for the Leverage Engine."""

from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
