"""
Schema install/upgrade CLI commands (upgrade, status).
"""

from omeroqtypes.cli import get_db_engine
from omeroqtypes.migrations import UPGRADERS, get_installed_version, install_or_upgrade


def register_upgrade_commands(subparsers):
    """Register schema management subcommands."""
    subparsers.add_parser("upgrade", help="Install missing plugin tables and apply pending upgrades.")
    subparsers.add_parser("status", help="Show installed and latest schema version per plugin.")


def handle_upgrade(config, args):
    """Run install_or_upgrade. Returns the process exit code."""
    engine = get_db_engine(config)
    try:
        results = install_or_upgrade(engine)
    finally:
        engine.dispose()

    for qtype, ok in results.items():
        upgrader = UPGRADERS[qtype]
        if ok:
            print(f"[OK] {upgrader.plugin} is at version {upgrader.latest_version}")
        else:
            print(f"[FAIL] {upgrader.plugin} upgrade failed (see log for details)")
    return 0 if all(results.values()) else 1


def handle_status(config, args):
    """Print installed vs. latest version for each plugin."""
    engine = get_db_engine(config)
    try:
        for qtype, upgrader in UPGRADERS.items():
            installed = get_installed_version(engine, upgrader.plugin)
            pending = upgrader.pending_steps(installed or 0)
            state = "up to date" if installed is not None and not pending else f"{len(pending)} step(s) pending"
            if installed is None:
                state = "not installed"
            print(f"{upgrader.plugin}: installed={installed} latest={upgrader.latest_version} ({state})")
    finally:
        engine.dispose()
    return 0
