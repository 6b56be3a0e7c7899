"""
The ecosystem package.
Reads, validates and writes pm2-style ecosystem files.

An ecosystem file declares the processes to run as an `apps` list; each
entry becomes a LaunchSpec.
"""
from .errors import EcosystemError, EcosystemSyntaxError, LaunchSpecError
from .models import Ecosystem, LaunchSpec
from .parser import load_ecosystem, loads_ecosystem
from .writer import dump_ecosystem, save_ecosystem
from .defaults import UPSEND, default_ecosystem

__all__ = [
    "Ecosystem", "LaunchSpec",
    "EcosystemError", "EcosystemSyntaxError", "LaunchSpecError",
    "load_ecosystem", "loads_ecosystem", "dump_ecosystem", "save_ecosystem",
    "UPSEND", "default_ecosystem",
]
