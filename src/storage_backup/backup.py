from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from .azcopy import AzCopyRunner, CopyCommand
from .config import DEFAULT_ENDPOINT_SUFFIX
from .storage import BlobContainerProvisioner

LOG = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%dT%H%M%SZ"


class InvalidBackupRequest(ValueError):
    """Raised when a backup call is missing a required argument."""


def storage_url(account_name: str, service: str, endpoint_suffix: str, *segments: Optional[str]) -> str:
    path = "/".join(segment.strip("/") for segment in segments if segment and segment.strip("/"))
    return f"https://{account_name}.{service}.{endpoint_suffix}/{path}"


def _require_text(name: str, value: Optional[str]) -> str:
    if value is None or not str(value).strip():
        raise InvalidBackupRequest(f"{name} must not be empty")
    return value


def _require_resources(name: str, resources: Optional[Iterable[str]]) -> List[str]:
    items = list(resources) if resources is not None else []
    if not items:
        raise InvalidBackupRequest(f"{name} must contain at least one entry")
    for item in items:
        _require_text(name, item)
    return items


class StorageBackup:
    """Backs up tables and blob containers of one source account with azcopy."""

    def __init__(
        self,
        source_account_name: str,
        source_account_key: str,
        runner: AzCopyRunner,
        provisioner: Optional[BlobContainerProvisioner] = None,
        endpoint_suffix: str = DEFAULT_ENDPOINT_SUFFIX,
    ) -> None:
        self._source_account_name = _require_text("source_account_name", source_account_name)
        self._source_account_key = _require_text("source_account_key", source_account_key)
        self._runner = runner
        self._endpoint_suffix = endpoint_suffix
        self._provisioner = provisioner or BlobContainerProvisioner(endpoint_suffix=endpoint_suffix)

    def backup_tables_to_blob(
        self,
        source_tables: Iterable[str],
        target_account_name: str,
        target_account_key: str,
        target_container_name: str,
        sub_folder: Optional[str] = None,
    ) -> None:
        tables = _require_resources("source_tables", source_tables)
        self._validate_target(target_account_name, target_account_key, target_container_name)
        self._provisioner.ensure_container(target_account_name, target_account_key, target_container_name)

        LOG.info(
            "Backing up tables from %s: %s to %s/%s",
            self._source_account_name,
            ", ".join(tables),
            target_account_name,
            target_container_name,
        )
        dest = storage_url(target_account_name, "blob", self._endpoint_suffix, target_container_name, sub_folder)
        for table in tables:
            command = CopyCommand(
                source=storage_url(self._source_account_name, "table", self._endpoint_suffix, table),
                source_key=self._source_account_key,
                dest=dest,
                dest_key=target_account_key,
            )
            self._runner.run(command)
        LOG.info("Table backup to %s/%s done", target_account_name, target_container_name)

    def backup_blob_containers(
        self,
        source_containers: Iterable[str],
        target_account_name: str,
        target_account_key: str,
        target_container_name: str,
        sub_folder: Optional[str] = None,
        timestamped: bool = True,
    ) -> None:
        containers = _require_resources("source_containers", source_containers)
        self._validate_target(target_account_name, target_account_key, target_container_name)
        self._provisioner.ensure_container(target_account_name, target_account_key, target_container_name)

        LOG.info(
            "Backing up containers from %s: %s to %s/%s",
            self._source_account_name,
            ", ".join(containers),
            target_account_name,
            target_container_name,
        )
        timestamp = datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT) if timestamped else None
        for container in containers:
            command = CopyCommand(
                source=storage_url(self._source_account_name, "blob", self._endpoint_suffix, container),
                source_key=self._source_account_key,
                dest=storage_url(
                    target_account_name,
                    "blob",
                    self._endpoint_suffix,
                    target_container_name,
                    sub_folder,
                    container,
                    timestamp,
                ),
                dest_key=target_account_key,
                recursive=True,
            )
            self._runner.run(command)
        LOG.info("Container backup to %s/%s done", target_account_name, target_container_name)

    async def backup_tables_to_blob_async(self, *args, **kwargs) -> None:
        await asyncio.to_thread(self.backup_tables_to_blob, *args, **kwargs)

    async def backup_blob_containers_async(self, *args, **kwargs) -> None:
        await asyncio.to_thread(self.backup_blob_containers, *args, **kwargs)

    @staticmethod
    def _validate_target(account_name: str, account_key: str, container_name: str) -> None:
        _require_text("target_account_name", account_name)
        _require_text("target_account_key", account_key)
        _require_text("target_container_name", container_name)
