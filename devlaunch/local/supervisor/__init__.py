"""
The Supervisor package.
Manages the lifecycle of the processes declared in an ecosystem file.

This package contains the central ProcessManager class and its helper modules,
which together handle the starting, stopping, supervising, and watching
of all app processes.
"""
from .supervisor import ProcessManager

__all__ = ['ProcessManager']
