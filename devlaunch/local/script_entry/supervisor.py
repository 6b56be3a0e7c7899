"""
This is a minimal entry point script for the supervisor process.

Its sole responsibility is to load the ecosystem, instantiate the
ProcessManager and run the supervision loop.
"""
import sys
import argparse
import setproctitle
from devlaunch.local.config import effective_settings as config
from devlaunch.local.ecosystem import default_ecosystem, load_ecosystem
from devlaunch.local.supervisor import ProcessManager
from devlaunch.log.setup import setup_logging


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="devlaunch-supervisor")
    parser.add_argument("--file", default=str(config.ECOSYSTEM_FILE), help="Ecosystem file to supervise.")
    parser.add_argument("--builtin", action="store_true", help="Supervise the built-in upsend app instead of a file.")
    args = parser.parse_args(argv)

    setproctitle.setproctitle(config.SUPERVISOR_PROCESS_TITLE)
    setup_logging()
    ecosystem = default_ecosystem() if args.builtin else load_ecosystem(args.file)
    manager = ProcessManager(ecosystem)
    manager.supervision_loop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
