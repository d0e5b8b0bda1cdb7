import os
import json
import threading
from datetime import datetime, timezone
from typing import List, Dict
from lexsync.core.errors import BlobNotFound, PersistenceFailure
from lexsync.models.document import BlobObject
from lexsync.storage.base import BlobStore

class LocalBlobStore(BlobStore):
    """
    Implements BlobStore on the local disk.
    - Keys map to relative paths under base_path ("documents/123-x.pdf").
    - Content types live in a sidecar JSON map, the files themselves are raw bytes.
    """

    _TYPES_FILE = ".content_types.json"

    def __init__(self, base_path: str = "./data/blobs"):
        self.base_path = os.path.abspath(base_path)
        os.makedirs(self.base_path, exist_ok=True)
        self._lock = threading.Lock()

    def _path_for(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.base_path, key))
        if not path.startswith(self.base_path + os.sep):
            raise PersistenceFailure(f"Key escapes blob root: {key}")
        return path

    def _load_types(self) -> Dict[str, str]:
        path = os.path.join(self.base_path, self._TYPES_FILE)
        if not os.path.exists(path):
            return {}
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _save_types(self, types: Dict[str, str]) -> None:
        path = os.path.join(self.base_path, self._TYPES_FILE)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(types, f, ensure_ascii=False, indent=2)

    def upload(self, data: bytes, key: str, content_type: str = "application/pdf") -> str:
        path = self._path_for(key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as f:
                f.write(data)
            with self._lock:
                types = self._load_types()
                types[key] = content_type
                self._save_types(types)
        except OSError as e:
            raise PersistenceFailure(f"Could not write blob {key}: {e}") from e
        return key

    def download(self, key: str) -> bytes:
        path = self._path_for(key)
        if not os.path.isfile(path):
            raise BlobNotFound(key)
        with open(path, "rb") as f:
            return f.read()

    def read_prefix(self, key: str, length: int) -> bytes:
        path = self._path_for(key)
        if not os.path.isfile(path):
            raise BlobNotFound(key)
        with open(path, "rb") as f:
            return f.read(length)

    def list(self, prefix: str = "") -> List[BlobObject]:
        types = self._load_types()
        objects = []
        for root, _dirs, files in os.walk(self.base_path):
            for name in files:
                if name == self._TYPES_FILE:
                    continue
                full = os.path.join(root, name)
                key = os.path.relpath(full, self.base_path).replace(os.sep, "/")
                if not key.startswith(prefix):
                    continue
                stat = os.stat(full)
                objects.append(BlobObject(
                    key=key,
                    size=stat.st_size,
                    content_type=types.get(key, "application/octet-stream"),
                    updated_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
                ))
        objects.sort(key=lambda o: o.key)
        return objects

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        if os.path.exists(path):
            os.remove(path)
        with self._lock:
            types = self._load_types()
            if types.pop(key, None) is not None:
                self._save_types(types)
