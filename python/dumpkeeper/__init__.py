"""
dumpkeeper - unattended database backups

This package runs the recurring backup cycle for a MySQL database:
- Consistent logical snapshots with mysqldump
- Password-protected zip archives via an external archiver
- Off-box delivery to a Telegram chat
- Age-based retention of local artifacts
- A byte cap on an unrelated log directory sharing the disk
"""

__version__ = "0.3.0"
__all__ = [
    "archiver",
    "capabilities",
    "cli",
    "config",
    "delivery",
    "exceptions",
    "logging",
    "logtrim",
    "models",
    "pipeline",
    "process",
    "retention",
    "scheduler",
    "snapshot",
]
