"""Azure storage backup package driven by azcopy."""

from __future__ import annotations

from .azcopy import AzCopyError, AzCopyRunner, locate_azcopy  # noqa: F401
from .backup import InvalidBackupRequest, StorageBackup  # noqa: F401
from .config import load_config, CoreConfig  # noqa: F401
from .orchestrator import BackupOrchestrator  # noqa: F401
