"""
Core configuration for fusebox.
"""

from .config import BreakerConfig

__all__ = ["BreakerConfig"]
