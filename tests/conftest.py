"""
Shared fixtures: a fake azcopy process and a fake blob service.

Nothing here touches the network or spawns a real process.
"""

import subprocess
import threading
import time

import pytest

from storage_backup.azcopy import AzCopyRunner
from storage_backup.storage import BlobContainerProvisioner


class FakeAzCopy:
    """Stands in for subprocess.run and records every azcopy invocation."""

    def __init__(self):
        self.calls = []
        self.intervals = []
        self.stderr_for = {}
        self.returncode_for = {}
        self.duration = 0.0
        self._lock = threading.Lock()

    def __call__(self, cmd, **kwargs):
        start = time.monotonic()
        if self.duration:
            time.sleep(self.duration)
        end = time.monotonic()
        with self._lock:
            self.calls.append(list(cmd))
            self.intervals.append((start, end))

        source = next(arg for arg in cmd if arg.startswith("/source:"))
        resource = source.rsplit("/", 1)[-1]
        return subprocess.CompletedProcess(
            cmd,
            self.returncode_for.get(resource, 0),
            stdout=f"Transfer of {resource} finished",
            stderr=self.stderr_for.get(resource, ""),
        )

    def sources(self):
        return [next(arg for arg in call if arg.startswith("/source:")) for call in self.calls]


class FakeContainerClient:

    def __init__(self, name, error=None):
        self.name = name
        self.create_calls = 0
        self._error = error

    def create_container(self):
        self.create_calls += 1
        if self._error is not None:
            raise self._error


class FakeBlobService:
    """Replaces BlobServiceClient.from_connection_string."""

    def __init__(self):
        self.connection_strings = []
        self.containers = {}
        self.errors = {}

    def from_connection_string(self, connection_string):
        self.connection_strings.append(connection_string)
        return self

    def get_container_client(self, name):
        client = FakeContainerClient(name, error=self.errors.get(name))
        self.containers.setdefault(name, []).append(client)
        return client

    def create_calls(self, name=None):
        names = [name] if name else list(self.containers)
        return sum(client.create_calls for n in names for client in self.containers.get(n, []))


@pytest.fixture
def fake_azcopy(monkeypatch):
    fake = FakeAzCopy()
    monkeypatch.setattr("storage_backup.azcopy.subprocess.run", fake)
    return fake


@pytest.fixture
def azcopy_executable(tmp_path):
    path = tmp_path / "bin" / "azcopy"
    path.parent.mkdir()
    path.write_text("#!/bin/sh\n", encoding="utf-8")
    return path


@pytest.fixture
def runner(fake_azcopy, azcopy_executable):
    return AzCopyRunner(azcopy_executable, settle_delay=0)


@pytest.fixture
def blob_service():
    return FakeBlobService()


@pytest.fixture
def provisioner(blob_service):
    return BlobContainerProvisioner(client_factory=blob_service.from_connection_string)
