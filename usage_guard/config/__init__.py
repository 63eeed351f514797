"""
Limit configuration.
"""

from .loader import LimitsConfig, load_config

__all__ = ["LimitsConfig", "load_config"]
