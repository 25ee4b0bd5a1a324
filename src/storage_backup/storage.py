from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional, Tuple

from azure.core.exceptions import ResourceExistsError
from azure.storage.blob import BlobServiceClient, ContainerClient

from .config import DEFAULT_ENDPOINT_SUFFIX

LOG = logging.getLogger(__name__)

ClientFactory = Callable[[str], BlobServiceClient]


def build_connection_string(account_name: str, account_key: str, endpoint_suffix: str = DEFAULT_ENDPOINT_SUFFIX) -> str:
    return (
        "DefaultEndpointsProtocol=https;"
        f"AccountName={account_name};"
        f"AccountKey={account_key};"
        f"EndpointSuffix={endpoint_suffix}"
    )


class BlobContainerProvisioner:
    """Creates destination containers once per (account, container) pair."""

    def __init__(
        self,
        endpoint_suffix: str = DEFAULT_ENDPOINT_SUFFIX,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self._endpoint_suffix = endpoint_suffix
        self._client_factory = client_factory
        self._containers: Dict[Tuple[str, str], Tuple[str, ContainerClient]] = {}
        self._lock = threading.Lock()

    def ensure_container(self, account_name: str, account_key: str, container_name: str) -> ContainerClient:
        key = (account_name, container_name)
        with self._lock:
            cached = self._containers.get(key)
            if cached is not None:
                cached_key, cached_container = cached
                if cached_key == account_key:
                    return cached_container
                # Key rotated: reconnect with the new key.
                LOG.info("Account key changed for %s; reconnecting to %s", account_name, container_name)

            connection_string = build_connection_string(account_name, account_key, self._endpoint_suffix)
            factory = self._client_factory or BlobServiceClient.from_connection_string
            service = factory(connection_string)
            container = service.get_container_client(container_name)
            try:
                container.create_container()
                LOG.info("Created container %s/%s", account_name, container_name)
            except ResourceExistsError:
                LOG.debug("Container already exists: %s/%s", account_name, container_name)

            self._containers[key] = (account_key, container)
            return container
