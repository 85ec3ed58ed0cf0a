"""
File-based data store for local development and testing.

Stores every blob as a file on disk next to a JSON metadata sidecar.
"""

import json
import logging
import os
import shutil
from pathlib import Path
from threading import RLock
from typing import Optional

from dwnstream import settings
from dwnstream.data_store.base import (
    DATA_STORE_FOLDER,
    BaseDataStore,
    DataInput,
    object_key,
    to_bytes,
)
from dwnstream.schemas import DataStoreGetResult, DataStorePutResult

logger = logging.getLogger(__name__)


class FileDataStore(BaseDataStore):
    """
    Blob store on the local filesystem.

    Thread-safe with atomic file writes.
    Good for development, testing, and single-instance deployments.
    """

    def __init__(self, storage_dir: str = settings.DATASTORE_DIR):
        """
        Initialize file storage.

        Args:
            storage_dir: Directory to store blobs in
        """
        self.storage_dir = Path(storage_dir)
        self._lock = RLock()

    def _path(self, tenant: str, record_id: str, data_cid: str) -> Path:
        return self.storage_dir / object_key(tenant, record_id, data_cid)

    @staticmethod
    def _meta_path(path: Path) -> Path:
        return path.with_name(path.name + ".meta.json")

    async def open(self) -> None:
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    async def close(self) -> None:
        pass

    def _write_atomic(self, path: Path, content: bytes) -> None:
        tmp_file = path.with_name(path.name + ".tmp")
        with open(tmp_file, "wb") as f:
            f.write(content)
        os.replace(tmp_file, path)

    def _stored_size(self, path: Path) -> int:
        try:
            with open(self._meta_path(path), "r", encoding="utf-8") as f:
                return int(json.load(f)["data_size"])
        except (json.JSONDecodeError, FileNotFoundError, KeyError):
            return path.stat().st_size

    async def put(
        self, tenant: str, record_id: str, data_cid: str, data: DataInput
    ) -> DataStorePutResult:
        body = await to_bytes(data)
        path = self._path(tenant, record_id, data_cid)
        with self._lock:
            if path.exists():
                return DataStorePutResult(
                    data_cid=data_cid, data_size=self._stored_size(path)
                )
            path.parent.mkdir(parents=True, exist_ok=True)
            metadata = {"tenant": tenant, "data_cid": data_cid, "data_size": len(body)}
            self._write_atomic(path, body)
            self._write_atomic(
                self._meta_path(path), json.dumps(metadata, indent=2).encode("utf-8")
            )
        logger.debug(f"[FileDataStore] stored {path} ({len(body)} bytes)")
        return DataStorePutResult(data_cid=data_cid, data_size=len(body))

    async def get(
        self, tenant: str, record_id: str, data_cid: str
    ) -> Optional[DataStoreGetResult]:
        path = self._path(tenant, record_id, data_cid)
        with self._lock:
            if not path.exists():
                logger.debug(f"[FileDataStore] requested data does not exist: {path}")
                return None
            body = path.read_bytes()
            try:
                with open(self._meta_path(path), "r", encoding="utf-8") as f:
                    metadata = json.load(f)
            except (json.JSONDecodeError, FileNotFoundError):
                metadata = {}
        return DataStoreGetResult(
            data_cid=metadata.get("data_cid", data_cid),
            data_size=int(metadata.get("data_size", len(body))),
            data=body,
        )

    async def delete(self, tenant: str, record_id: str, data_cid: str) -> None:
        path = self._path(tenant, record_id, data_cid)
        with self._lock:
            path.unlink(missing_ok=True)
            self._meta_path(path).unlink(missing_ok=True)

    async def clear(self) -> None:
        with self._lock:
            shutil.rmtree(self.storage_dir / DATA_STORE_FOLDER, ignore_errors=True)
