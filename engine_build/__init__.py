"""
engine_build - Build and test runner for engine build configs

Runs the gn, ninja, generator and test steps of a build config, optionally
building with RBE, and reports every step as a stream of runner events.
"""

__version__ = "0.1.0"


__all__ = ["BuildConfig", "load_config", "load_settings", "get_engine_build_home"]

from .config import BuildConfig, get_engine_build_home, load_config, load_settings
