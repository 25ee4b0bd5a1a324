from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from storage_backup.azcopy import AzCopyRunner
from storage_backup.backup import StorageBackup
from storage_backup.config import CoreConfig, JobConfig
from storage_backup.job_engine import BackupService, BackupServiceError, JobContext
from storage_backup.storage import BlobContainerProvisioner


class _AzureBackupService(BackupService, ABC):
    """Shared lifecycle for jobs that copy from one account into a blob container."""

    service_name = ""

    def __init__(
        self,
        job: JobConfig,
        config: CoreConfig,
        runner: AzCopyRunner,
        provisioner: BlobContainerProvisioner,
    ) -> None:
        if job.service != self.service_name:
            raise ValueError(f"{type(self).__name__} cannot handle service '{job.service}'")
        self._job = job
        self._config = config
        self._runner = runner
        self._provisioner = provisioner
        self._backup: Optional[StorageBackup] = None
        self._target_key: Optional[str] = None

    # Job lifecycle ---------------------------------------------------------
    def prepare(self, context: JobContext) -> None:  # noqa: ARG002
        source = self._config.account(self._job.source_account)
        target = self._config.account(self._job.destination.account)

        source_key = source.resolved_key()
        if not source_key:
            raise BackupServiceError(f"Key for account '{self._job.source_account}' could not be resolved.")
        target_key = target.resolved_key()
        if not target_key:
            raise BackupServiceError(f"Key for account '{self._job.destination.account}' could not be resolved.")

        self._backup = StorageBackup(
            source_account_name=source.name,
            source_account_key=source_key,
            runner=self._runner,
            provisioner=self._provisioner,
            endpoint_suffix=self._config.azcopy.endpoint_suffix,
        )
        self._target_key = target_key

    def execute(self, context: JobContext) -> None:  # noqa: ARG002
        if not self._backup or not self._target_key:
            raise BackupServiceError(f"{self.service_name} service not prepared.")
        self._copy(self._backup, self._target_key)

    def finalize(self, context: JobContext) -> None:  # noqa: ARG002
        return

    # Internal helpers ------------------------------------------------------
    @abstractmethod
    def _copy(self, backup: StorageBackup, target_key: str) -> None:
        """Run the azcopy batch for this job type."""

    @property
    def _target_account_name(self) -> str:
        return self._config.account(self._job.destination.account).name


class TableBackupService(_AzureBackupService):
    """Exports Azure tables into a blob container."""

    service_name = "tables"

    def _copy(self, backup: StorageBackup, target_key: str) -> None:
        destination = self._job.destination
        backup.backup_tables_to_blob(
            self._job.sources,
            self._target_account_name,
            target_key,
            destination.container,
            destination.sub_folder,
        )


class BlobBackupService(_AzureBackupService):
    """Copies blob containers recursively into a blob container."""

    service_name = "blobs"

    def _copy(self, backup: StorageBackup, target_key: str) -> None:
        destination = self._job.destination
        backup.backup_blob_containers(
            self._job.sources,
            self._target_account_name,
            target_key,
            destination.container,
            destination.sub_folder,
            timestamped=self._job.timestamped,
        )
