"""vps-backup command-line interface."""

import sys

from vpsbackup.backup.diagnostics import main as check_main
from vpsbackup.backup.pipeline import main as run_main
from vpsbackup.notifier.notifier import main as notify_main

COMMANDS = {
    "run": run_main,
    "check": check_main,
    "notify": notify_main,
}


def main() -> None:
    """Dispatch ``run``, ``check`` or ``notify`` to its entry point."""
    if len(sys.argv) < 2 or sys.argv[1] not in COMMANDS:  # noqa: PLR2004
        print(f"usage: {sys.argv[0]} {{{','.join(COMMANDS)}}} [options]")  # noqa: T201
        sys.exit(2)

    command = sys.argv.pop(1)
    COMMANDS[command]()


if __name__ == "__main__":
    main()
