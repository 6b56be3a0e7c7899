"""
Entry point scripts for processes spawned by devlaunch.

This package contains minimal entry point scripts, such as the detached
supervisor, that are run with `python -m` by the process manager.
"""
