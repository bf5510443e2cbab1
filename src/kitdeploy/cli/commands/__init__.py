"""CLI command modules for kitdeploy."""

from .backups_cmd import app as backups_app
from .check_cmd import check
from .install_cmd import install
from .migrate_cmd import migrate
from .repair_cmd import repair
from .uninstall_cmd import uninstall

__all__ = [
    "backups_app",
    "check",
    "install",
    "migrate",
    "repair",
    "uninstall",
]
