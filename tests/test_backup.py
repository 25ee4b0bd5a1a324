"""
StorageBackup tests: validation, container creation, per-resource invocations.
"""

import asyncio
import re
import threading

import pytest
from azure.core.exceptions import HttpResponseError, ResourceExistsError

from storage_backup.azcopy import AzCopyError
from storage_backup.backup import InvalidBackupRequest, StorageBackup, storage_url


@pytest.fixture
def backup(runner, provisioner):
    return StorageBackup("srcacct", "srckey", runner=runner, provisioner=provisioner)


class TestValidation:

    @pytest.mark.parametrize(
        "resources, account, key, container",
        [
            ([], "dst", "dstkey", "backups"),
            (None, "dst", "dstkey", "backups"),
            (["t1"], "", "dstkey", "backups"),
            (["t1"], "dst", "   ", "backups"),
            (["t1"], "dst", "dstkey", None),
            (["t1", ""], "dst", "dstkey", "backups"),
        ],
    )
    def test_invalid_arguments_fail_before_any_work(
        self, backup, fake_azcopy, blob_service, resources, account, key, container
    ):
        with pytest.raises(InvalidBackupRequest):
            backup.backup_tables_to_blob(resources, account, key, container)
        with pytest.raises(InvalidBackupRequest):
            backup.backup_blob_containers(resources, account, key, container)

        assert fake_azcopy.calls == []
        assert blob_service.connection_strings == []

    def test_invalid_request_is_a_value_error(self):
        assert issubclass(InvalidBackupRequest, ValueError)

    def test_source_account_required(self, runner, provisioner):
        with pytest.raises(InvalidBackupRequest):
            StorageBackup(" ", "srckey", runner=runner, provisioner=provisioner)


class TestTableBackup:

    def test_one_invocation_per_table_in_order(self, backup, fake_azcopy):
        backup.backup_tables_to_blob(["t1", "t2"], "dstacct", "dstkey", "backups", "tables")

        assert fake_azcopy.sources() == [
            "/source:https://srcacct.table.core.windows.net/t1",
            "/source:https://srcacct.table.core.windows.net/t2",
        ]
        for call in fake_azcopy.calls:
            assert "/S" not in call
            assert "/Y" in call
            assert "/dest:https://dstacct.blob.core.windows.net/backups/tables" in call
            assert "/sourceKey:srckey" in call
            assert "/Destkey:dstkey" in call

    def test_without_sub_folder(self, backup, fake_azcopy):
        backup.backup_tables_to_blob(["t1"], "dstacct", "dstkey", "backups")

        assert "/dest:https://dstacct.blob.core.windows.net/backups" in fake_azcopy.calls[0]

    def test_creates_destination_container_once(self, backup, blob_service):
        backup.backup_tables_to_blob(["t1"], "dstacct", "dstkey", "backups")
        backup.backup_tables_to_blob(["t2"], "dstacct", "dstkey", "backups")

        assert blob_service.create_calls("backups") == 1

    def test_error_aborts_remaining_tables(self, backup, fake_azcopy):
        fake_azcopy.stderr_for["t2"] = "Table t2 was not found"

        with pytest.raises(AzCopyError) as excinfo:
            backup.backup_tables_to_blob(["t1", "t2", "t3"], "dstacct", "dstkey", "backups")

        assert excinfo.value.stderr == "Table t2 was not found"
        assert len(fake_azcopy.calls) == 2

    def test_async_variant(self, backup, fake_azcopy):
        asyncio.run(backup.backup_tables_to_blob_async(["t1"], "dstacct", "dstkey", "backups"))

        assert len(fake_azcopy.calls) == 1


class TestBlobContainerBackup:

    def test_recursive_copy_into_timestamped_folder(self, backup, fake_azcopy):
        backup.backup_blob_containers(["c1"], "dstacct", "dstkey", "backups", "blobs")

        (call,) = fake_azcopy.calls
        assert "/source:https://srcacct.blob.core.windows.net/c1" in call
        assert "/S" in call
        assert "/Y" in call
        dest = next(arg for arg in call if arg.startswith("/dest:"))
        assert re.fullmatch(
            r"/dest:https://dstacct\.blob\.core\.windows\.net/backups/blobs/c1/\d{8}T\d{6}Z", dest
        )

    def test_batch_shares_one_timestamp(self, backup, fake_azcopy):
        backup.backup_blob_containers(["c1", "c2"], "dstacct", "dstkey", "backups")

        stamps = {
            next(arg for arg in call if arg.startswith("/dest:")).rsplit("/", 1)[-1]
            for call in fake_azcopy.calls
        }
        assert len(stamps) == 1

    def test_untimestamped_variant(self, backup, fake_azcopy):
        backup.backup_blob_containers(["c1"], "dstacct", "dstkey", "backups", timestamped=False)

        assert "/dest:https://dstacct.blob.core.windows.net/backups/c1" in fake_azcopy.calls[0]

    def test_error_aborts_remaining_containers(self, backup, fake_azcopy):
        fake_azcopy.stderr_for["c1"] = "403 This request is not authorized"

        with pytest.raises(AzCopyError, match="not authorized"):
            backup.backup_blob_containers(["c1", "c2"], "dstacct", "dstkey", "backups")

        assert len(fake_azcopy.calls) == 1

    def test_concurrent_callers_never_overlap(self, backup, fake_azcopy):
        fake_azcopy.duration = 0.01
        errors = []

        def worker(prefix):
            try:
                backup.backup_blob_containers([f"{prefix}1", f"{prefix}2"], "dstacct", "dstkey", "backups")
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(p,)) for p in "abcd"]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        intervals = sorted(fake_azcopy.intervals)
        assert len(intervals) == 8
        for (_, prev_end), (next_start, _) in zip(intervals, intervals[1:]):
            assert next_start >= prev_end


class TestContainerProvisioner:

    def test_distinct_containers_are_created_separately(self, provisioner, blob_service):
        provisioner.ensure_container("dstacct", "dstkey", "one")
        provisioner.ensure_container("dstacct", "dstkey", "two")
        provisioner.ensure_container("dstacct", "dstkey", "one")

        assert blob_service.create_calls("one") == 1
        assert blob_service.create_calls("two") == 1

    def test_connection_string_format(self, provisioner, blob_service):
        provisioner.ensure_container("dstacct", "dstkey", "one")

        assert blob_service.connection_strings == [
            "DefaultEndpointsProtocol=https;AccountName=dstacct;AccountKey=dstkey;EndpointSuffix=core.windows.net"
        ]

    def test_existing_container_is_success(self, provisioner, blob_service):
        blob_service.errors["one"] = ResourceExistsError("ContainerAlreadyExists")

        provisioner.ensure_container("dstacct", "dstkey", "one")
        provisioner.ensure_container("dstacct", "dstkey", "one")

        assert blob_service.create_calls("one") == 1

    def test_other_storage_errors_propagate(self, provisioner, blob_service):
        blob_service.errors["one"] = HttpResponseError("AuthenticationFailed")

        with pytest.raises(HttpResponseError):
            provisioner.ensure_container("dstacct", "dstkey", "one")


def test_storage_url_skips_empty_segments():
    assert storage_url("acct", "blob", "core.windows.net", "c", None, "/sub/", "", "x") == (
        "https://acct.blob.core.windows.net/c/sub/x"
    )


def test_rotated_account_key_reconnects(provisioner, blob_service):
    provisioner.ensure_container("dstacct", "oldkey", "one")
    provisioner.ensure_container("dstacct", "oldkey", "one")
    provisioner.ensure_container("dstacct", "newkey", "one")

    assert len(blob_service.connection_strings) == 2
    assert "AccountKey=newkey" in blob_service.connection_strings[-1]
    assert blob_service.create_calls("one") == 2
