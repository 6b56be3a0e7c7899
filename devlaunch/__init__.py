"""
devlaunch: a small process launcher for pm2-style ecosystem files.

Reads `ecosystem.config.cjs` (or its JSON/YAML equivalents), starts the apps it
declares and keeps them running.
"""

__version__ = "0.1.0"
