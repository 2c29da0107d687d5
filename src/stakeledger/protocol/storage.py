"""
stakeledger/protocol/storage.py

Snapshot persistence for the distribution ledger.

Two-tier storage:
1. Memory cache - Fast access
2. Local disk - Crash recovery

Snapshots are plain dicts encoded as JSON. Python integers round-trip
exactly, so balances and rates survive a save/load to the last unit.

Used by:
- LedgerAutosaver - periodic snapshots of a running engine
- Anything restoring an engine after a restart
"""

import json
import time
import logging
import hashlib
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, TYPE_CHECKING

import trio

from ..config import DEFAULT_STORAGE_DIR, SNAPSHOT_KEY, EngineConfig

if TYPE_CHECKING:
    from .distribution import Distribution

logger = logging.getLogger("stakeledger.protocol.storage")


# ============================================================================
# STORAGE BACKENDS
# ============================================================================

class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Get a value by key."""
        pass

    @abstractmethod
    async def put(self, key: str, value: bytes) -> bool:
        """Store a value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a value."""
        pass

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> List[str]:
        """List keys with optional prefix filter."""
        pass


class MemoryBackend(StorageBackend):
    """In-memory storage backend."""

    def __init__(self):
        self._data: Dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def put(self, key: str, value: bytes) -> bool:
        self._data[key] = value
        return True

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def list_keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._data if key.startswith(prefix)]


class FileBackend(StorageBackend):
    """Local file storage backend, one file per key plus a metadata index."""

    def __init__(self, storage_dir: Optional[Path] = None):
        self.storage_dir = Path(storage_dir or DEFAULT_STORAGE_DIR)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._metadata_file = self.storage_dir / "metadata.json"
        self._metadata: Dict[str, dict] = self._load_metadata()

    def _load_metadata(self) -> Dict[str, dict]:
        """Load metadata from disk."""
        if self._metadata_file.exists():
            try:
                with open(self._metadata_file, "r") as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load metadata: {e}")
        return {}

    def _save_metadata(self) -> None:
        with open(self._metadata_file, "w") as f:
            json.dump(self._metadata, f)

    def _key_to_path(self, key: str) -> Path:
        # Hash keeps arbitrary keys filesystem-safe
        hash_name = hashlib.sha256(key.encode()).hexdigest()[:32]
        return self.storage_dir / f"{hash_name}.dat"

    async def get(self, key: str) -> Optional[bytes]:
        if key not in self._metadata:
            return None

        path = self._key_to_path(key)
        if path.exists():
            try:
                return path.read_bytes()
            except OSError as e:
                logger.error(f"Failed to read {key}: {e}")
        return None

    async def put(self, key: str, value: bytes) -> bool:
        path = self._key_to_path(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            # Write-then-rename so a crash never leaves half a snapshot
            tmp_path.write_bytes(value)
            tmp_path.replace(path)
            self._metadata[key] = {
                "path": str(path),
                "updated_at": time.time(),
                "sha256": hashlib.sha256(value).hexdigest(),
            }
            self._save_metadata()
            return True
        except OSError as e:
            logger.error(f"Failed to write {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        if key not in self._metadata:
            return False

        path = self._key_to_path(key)
        try:
            if path.exists():
                path.unlink()
            del self._metadata[key]
            self._save_metadata()
            return True
        except OSError as e:
            logger.error(f"Failed to delete {key}: {e}")
            return False

    async def list_keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._metadata if key.startswith(prefix)]


# ============================================================================
# SNAPSHOT STORE
# ============================================================================

class SnapshotStore:
    """
    Memory-cached, disk-backed store for ledger snapshots.

    Read order: Memory -> Disk
    Write order: Memory + Disk

    Usage:
        store = SnapshotStore(namespace="mainnet", storage_dir=Path("/var/lib/stakeledger"))
        await store.save_snapshot(engine.snapshot())
        engine.restore(await store.load_snapshot())
    """

    def __init__(
        self,
        namespace: str = "default",
        storage_dir: Optional[Path] = None,
        disk: Optional[StorageBackend] = None,
    ):
        self.namespace = namespace
        self._memory = MemoryBackend()
        self._disk = disk if disk is not None else FileBackend(storage_dir)

    @classmethod
    def from_config(cls, config: EngineConfig, namespace: str = "default") -> "SnapshotStore":
        """Create a store under the configured storage directory."""
        return cls(namespace=namespace, storage_dir=config.storage_dir)

    def _make_key(self, key: str) -> str:
        return f"stakeledger:{self.namespace}:{key}"

    @staticmethod
    def _serialize(obj: Any) -> bytes:
        return json.dumps(obj, sort_keys=True).encode()

    @staticmethod
    def _deserialize(data: bytes) -> Any:
        return json.loads(data.decode())

    async def put(self, key: str, obj: Any) -> bool:
        """
        Store an object in both tiers.

        Returns:
            True if the disk write succeeded
        """
        full_key = self._make_key(key)
        data = self._serialize(obj)
        await self._memory.put(full_key, data)
        return await self._disk.put(full_key, data)

    async def get(self, key: str) -> Optional[Any]:
        """Fetch an object, refilling the memory cache from disk on a miss."""
        full_key = self._make_key(key)

        data = await self._memory.get(full_key)
        if data is None:
            data = await self._disk.get(full_key)
            if data is None:
                return None
            await self._memory.put(full_key, data)

        try:
            return self._deserialize(data)
        except ValueError as e:
            logger.error(f"Corrupt entry {full_key}: {e}")
            return None

    async def delete(self, key: str) -> bool:
        full_key = self._make_key(key)
        await self._memory.delete(full_key)
        return await self._disk.delete(full_key)

    async def list_keys(self) -> List[str]:
        prefix = self._make_key("")
        keys = await self._disk.list_keys(prefix)
        return [key[len(prefix):] for key in keys]

    async def save_snapshot(self, snapshot: dict, key: str = SNAPSHOT_KEY) -> bool:
        saved = await self.put(key, snapshot)
        if saved:
            logger.debug(f"Saved snapshot {key} (schema {snapshot.get('schema_version')})")
        return saved

    async def load_snapshot(self, key: str = SNAPSHOT_KEY) -> Optional[dict]:
        return await self.get(key)


# ============================================================================
# AUTOSAVE
# ============================================================================

class LedgerAutosaver:
    """
    Periodically saves a Distribution engine's snapshot.

    The interval defaults to the engine config's autosave_interval.

    Usage:
        autosaver = LedgerAutosaver(engine, store, interval=60)
        async with trio.open_nursery() as nursery:
            await autosaver.start(nursery)
            ...
            autosaver.stop()
    """

    def __init__(
        self,
        distribution: "Distribution",
        store: SnapshotStore,
        interval: Optional[float] = None,
        key: str = SNAPSHOT_KEY,
    ):
        self.distribution = distribution
        self.store = store
        self.interval = interval if interval is not None else distribution.config.autosave_interval
        self.key = key
        self.saves = 0
        self.failures = 0
        self._cancel_scope: Optional[trio.CancelScope] = None

    @property
    def running(self) -> bool:
        return self._cancel_scope is not None

    async def save_now(self) -> bool:
        """Save the current ledger state immediately."""
        saved = await self.store.save_snapshot(self.distribution.snapshot(), self.key)
        if saved:
            self.saves += 1
        else:
            self.failures += 1
            logger.error(f"Autosave of {self.key} failed")
        return saved

    async def start(self, nursery: trio.Nursery) -> None:
        """Start the save loop in `nursery`."""
        self._cancel_scope = trio.CancelScope()
        nursery.start_soon(self._save_loop, self._cancel_scope)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "interval": self.interval,
            "key": self.key,
            "saves": self.saves,
            "failures": self.failures,
        }

    def stop(self) -> None:
        if self._cancel_scope:
            self._cancel_scope.cancel()
            self._cancel_scope = None

    async def _save_loop(self, cancel_scope: trio.CancelScope) -> None:
        with cancel_scope:
            while True:
                await trio.sleep(self.interval)
                await self.save_now()

        # Final save so nothing committed since the last tick is lost
        await self.save_now()
