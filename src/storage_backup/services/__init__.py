from __future__ import annotations

from storage_backup.azcopy import AzCopyRunner
from storage_backup.config import CoreConfig, JobConfig
from storage_backup.job_engine import BackupService
from storage_backup.storage import BlobContainerProvisioner

from .azure import BlobBackupService, TableBackupService


def create_service(
    job: JobConfig,
    config: CoreConfig,
    runner: AzCopyRunner,
    provisioner: BlobContainerProvisioner,
) -> BackupService:
    if job.service == "tables":
        return TableBackupService(job, config, runner, provisioner)
    if job.service == "blobs":
        return BlobBackupService(job, config, runner, provisioner)
    raise ValueError(f"No service connector registered for '{job.service}'.")
