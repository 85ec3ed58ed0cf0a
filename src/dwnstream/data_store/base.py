"""
Abstract base class for all data store backends.

Defines the contract that all blob store implementations must follow.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterable, Optional, Union

from dwnstream.schemas import DataStoreGetResult, DataStorePutResult

DataInput = Union[bytes, AsyncIterable[bytes]]

DATA_STORE_FOLDER = "dataStore"


def object_key(tenant: str, record_id: str, data_cid: str) -> str:
    """Key of one stored blob, namespaced by tenant."""
    return f"{DATA_STORE_FOLDER}/{tenant}/{record_id}_{data_cid}"


async def to_bytes(data: DataInput) -> bytes:
    """Collect an async byte stream into one buffer."""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    chunks = []
    async for chunk in data:
        chunks.append(chunk)
    return b"".join(chunks)


class BaseDataStore(ABC):
    """
    Abstract blob store for DWN message data.

    All backends (Redis, local files) must implement these methods.
    """

    @abstractmethod
    async def open(self) -> None:
        """Make the backend ready for use."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        pass

    @abstractmethod
    async def put(
        self, tenant: str, record_id: str, data_cid: str, data: DataInput
    ) -> DataStorePutResult:
        """
        Store data for a record.

        If the blob already exists it is not written again.

        Args:
            tenant: Tenant id
            record_id: CID of the message that references the data
            data_cid: CID of the data
            data: Bytes or async stream of bytes

        Returns:
            The data CID and size
        """
        pass

    @abstractmethod
    async def get(
        self, tenant: str, record_id: str, data_cid: str
    ) -> Optional[DataStoreGetResult]:
        """
        Fetch the specified data.

        Args:
            tenant: Tenant id
            record_id: CID of the message that references the data
            data_cid: CID of the data

        Returns:
            The stored data and its metadata, or None if not found
        """
        pass

    @abstractmethod
    async def delete(self, tenant: str, record_id: str, data_cid: str) -> None:
        """
        Delete the specified data. Missing data is not an error.
        """
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Delete everything in the store. Mainly used to clean up between tests."""
        pass
