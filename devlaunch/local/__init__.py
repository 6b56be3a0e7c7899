"""
Local package for devlaunch.

This package provides the effective configuration, the ecosystem file
codec, the process supervisor and the management console.
"""

from .config import effective_settings

__all__ = ["effective_settings"]
