import os
import json
import logging
import threading
from typing import Callable, Dict, List, Any, Optional

import requests

from qrstock.core.errors import PersistenceFailure

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[List[Dict[str, Any]]], None]


class SyncStore:
    """
    A flat keyed record set mirrored across sessions.

    Subclasses implement _write and _read_all; this base turns _read_all into
    push notifications by polling on a daemon thread and calling subscribers
    whenever the content changes.
    """

    def __init__(self, poll_interval: float = 2.0):
        self.poll_interval = poll_interval
        self._listeners: List[SnapshotCallback] = []
        self._listeners_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_seen: Optional[Dict[str, Any]] = None

    def write(self, key: str, record: Dict[str, Any]):
        try:
            self._write(key, record)
        except PersistenceFailure:
            raise
        except Exception as e:
            raise PersistenceFailure(f"Failed to write {key}: {e}") from e

    def subscribe(self, on_snapshot: SnapshotCallback) -> Callable[[], None]:
        """Registers on_snapshot and returns a handle that unsubscribes it."""
        with self._listeners_lock:
            self._listeners.append(on_snapshot)
            if self._thread is None:
                self._stop_event.clear()
                self._thread = threading.Thread(target=self._poll_worker, daemon=True)
                self._thread.start()

        def unsubscribe():
            self._unsubscribe(on_snapshot)

        return unsubscribe

    def _unsubscribe(self, on_snapshot: SnapshotCallback):
        thread = None
        with self._listeners_lock:
            if on_snapshot in self._listeners:
                self._listeners.remove(on_snapshot)
            if not self._listeners and self._thread is not None:
                self._stop_event.set()
                thread = self._thread
                self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)

    def poll_once(self) -> bool:
        """Reads the store and notifies subscribers if anything changed. Returns True on change."""
        try:
            data = self._read_all()
        except Exception as e:
            logger.error(f"Error reading synchronized store: {e}")
            return False

        if data == self._last_seen:
            return False
        self._last_seen = data

        records = self._to_records(data)
        with self._listeners_lock:
            listeners = list(self._listeners)
        for cb in listeners:
            try:
                cb(records)
            except Exception as e:
                logger.error(f"Error in snapshot listener: {e}")
        return True

    def _poll_worker(self):
        while not self._stop_event.is_set():
            self.poll_once()
            self._stop_event.wait(self.poll_interval)

    @staticmethod
    def _to_records(data: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Keyed mapping -> record list, newest key first."""
        records = []
        for key in sorted(data.keys(), reverse=True):
            value = data[key]
            if isinstance(value, dict):
                record = dict(value)
                record.setdefault('id', key)
                records.append(record)
            else:
                logger.warning(f"Skipping non-object entry under key {key}")
        return records

    def _write(self, key: str, record: Dict[str, Any]):
        raise NotImplementedError

    def _read_all(self) -> Dict[str, Any]:
        raise NotImplementedError


class RemoteSyncStore(SyncStore):
    """Firebase-style REST key-value store: {base_url}/{collection}/{key}.json"""

    def __init__(self, base_url: str, collection: str = "products", poll_interval: float = 2.0,
                 timeout: float = 5.0, session: requests.Session = None):
        super().__init__(poll_interval=poll_interval)
        if not base_url:
            raise ValueError("RemoteSyncStore requires a base_url")
        self.base_url = base_url.rstrip('/')
        self.collection = collection
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url(self, key: str = None) -> str:
        if key is None:
            return f"{self.base_url}/{self.collection}.json"
        return f"{self.base_url}/{self.collection}/{key}.json"

    def _write(self, key: str, record: Dict[str, Any]):
        response = self.session.put(self._url(key), json=record, timeout=self.timeout)
        if response.status_code >= 300:
            raise PersistenceFailure(f"Remote store rejected {key}: HTTP {response.status_code}")

    def _read_all(self) -> Dict[str, Any]:
        response = self.session.get(self._url(), timeout=self.timeout)
        if response.status_code != 200:
            raise Exception(f"API Error: {response.status_code}")
        # Firebase returns null for an empty path
        return response.json() or {}


class LocalSyncStore(SyncStore):
    """The same keyed layout kept in a JSON file, for single-machine setups."""

    def __init__(self, path: str, poll_interval: float = 2.0):
        super().__init__(poll_interval=poll_interval)
        self.path = path
        self._file_lock = threading.Lock()
        self._last_mtime: Optional[float] = None

    def _write(self, key: str, record: Dict[str, Any]):
        with self._file_lock:
            data = self._load()
            data[key] = record
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            tmp_path = f"{self.path}.tmp"
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)

    def _read_all(self) -> Dict[str, Any]:
        with self._file_lock:
            return self._load()

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}

    def poll_once(self) -> bool:
        # Skip the parse when the file has not been touched
        try:
            mtime = os.path.getmtime(self.path)
        except OSError:
            mtime = None
        if mtime is not None and mtime == self._last_mtime and self._last_seen is not None:
            return False
        self._last_mtime = mtime
        return super().poll_once()
