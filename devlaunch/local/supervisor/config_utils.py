import shutil
import logging
from pathlib import Path
from devlaunch.local.ecosystem import Ecosystem, LaunchSpecError
from .process_utils import resolve_command

log = logging.getLogger(__name__)


def check_configuration(ecosystem: Ecosystem, base_dir: Path) -> bool:
    """
    Validates that every app can be launched as declared.

    Checks that each command resolves on PATH, that working directories and
    watch paths exist, and that env PORT agrees with the `--port` flag.

    :param ecosystem: The loaded ecosystem.
    :param base_dir: Directory relative paths are resolved against.
    :return: True if all checks pass, otherwise False.
    """
    log.info("Performing configuration and path validation...")
    all_ok = True

    for spec in ecosystem:
        command = resolve_command(spec.command)
        if shutil.which(command) is None:
            log.error(f"CONFIG CHECK FAILED: '{spec.name}' command '{spec.command}' not found on PATH")
            all_ok = False
        else:
            log.info(f"Config Check OK: '{spec.name}' runs '{command}'")

        workdir = spec.working_directory(base_dir)
        if not workdir.is_dir():
            log.error(f"CONFIG CHECK FAILED: '{spec.name}' working directory '{workdir}' does not exist")
            all_ok = False

        for path in spec.watch_paths(base_dir):
            if not path.exists():
                log.warning(f"Config Check: '{spec.name}' watch path '{path}' does not exist")

        try:
            spec.tokens()
            spec.check_port_consistency()
        except LaunchSpecError as e:
            log.error(f"CONFIG CHECK FAILED: {e}")
            all_ok = False
        else:
            if spec.port is not None:
                log.info(f"Config Check OK: '{spec.name}' listens on {spec.bind_host}:{spec.port}")
    return all_ok
