"""Configuration package for the escrow service."""
from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
