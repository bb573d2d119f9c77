"""Key-value persistence for accumulator tree nodes.

Every backend satisfies the four-call ``NodeStore`` protocol over raw byte keys
and values. Failures surface as ``StoreUnavailableError``; nothing in here retries.
Backends may also offer ``set_many`` to apply several writes in one round trip;
``write_many`` uses it when present.
"""

from __future__ import annotations

import json
import logging
import struct
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Tuple, runtime_checkable

from .errors import StoreUnavailableError

logger = logging.getLogger(__name__)

NODE_KEY_PREFIX = b"node:"
META_KEY = b"meta:accumulator"
_NODE_COORD = struct.Struct(">HQ")


def node_key(level: int, index: int) -> bytes:
    """Encode a ``(level, index)`` tree coordinate as a fixed-width byte key."""
    try:
        return NODE_KEY_PREFIX + _NODE_COORD.pack(int(level), int(index))
    except struct.error as exc:
        raise ValueError(f"coordinate ({level}, {index}) out of range") from exc


def parse_node_key(key: bytes) -> Tuple[int, int]:
    if not key.startswith(NODE_KEY_PREFIX) or len(key) != len(NODE_KEY_PREFIX) + _NODE_COORD.size:
        raise ValueError(f"not a node key: {key!r}")
    level, index = _NODE_COORD.unpack(key[len(NODE_KEY_PREFIX):])
    return level, index


@runtime_checkable
class NodeStore(Protocol):
    def get(self, key: bytes) -> Optional[bytes]:
        ...

    def set(self, key: bytes, value: bytes) -> None:
        ...

    def delete(self, key: bytes) -> None:
        ...

    def keys(self, prefix: bytes = b"") -> List[bytes]:
        ...


def write_many(store: NodeStore, items: Iterable[Tuple[bytes, bytes]]) -> None:
    """Apply ``items`` through ``store.set_many`` if the backend has it, else one by one."""
    set_many = getattr(store, "set_many", None)
    if set_many is not None:
        set_many(items)
        return
    for key, value in items:
        store.set(key, value)


class MemoryNodeStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: Dict[bytes, bytes] = {}

    def get(self, key: bytes) -> Optional[bytes]:
        with self._lock:
            return self._values.get(bytes(key))

    def set(self, key: bytes, value: bytes) -> None:
        with self._lock:
            self._values[bytes(key)] = bytes(value)

    def set_many(self, items: Iterable[Tuple[bytes, bytes]]) -> None:
        updates = {bytes(key): bytes(value) for key, value in items}
        with self._lock:
            self._values.update(updates)

    def delete(self, key: bytes) -> None:
        with self._lock:
            self._values.pop(bytes(key), None)

    def keys(self, prefix: bytes = b"") -> List[bytes]:
        wanted = bytes(prefix)
        with self._lock:
            return sorted(key for key in self._values if key.startswith(wanted))

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)


class PrefixedNodeStore:
    """Namespaces a backing store so unrelated trees can share it."""

    def __init__(self, store: NodeStore, prefix: bytes) -> None:
        self.store = store
        self.prefix = bytes(prefix)

    def _key(self, key: bytes) -> bytes:
        return self.prefix + bytes(key)

    def get(self, key: bytes) -> Optional[bytes]:
        return self.store.get(self._key(key))

    def set(self, key: bytes, value: bytes) -> None:
        self.store.set(self._key(key), value)

    def set_many(self, items: Iterable[Tuple[bytes, bytes]]) -> None:
        write_many(self.store, [(self._key(key), value) for key, value in items])

    def delete(self, key: bytes) -> None:
        self.store.delete(self._key(key))

    def keys(self, prefix: bytes = b"") -> List[bytes]:
        cut = len(self.prefix)
        return [key[cut:] for key in self.store.keys(self._key(prefix))]


class JsonFileNodeStore:
    """Durable store kept as a single JSON object of hex key -> hex value.

    Writes go to a temp file that atomically replaces the store file, so a crash
    leaves either the old or the new snapshot on disk.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._values: Dict[bytes, bytes] = {}
        self._load()

    def _load(self) -> None:
        try:
            if not self.path.exists():
                self.path.parent.mkdir(parents=True, exist_ok=True)
                return
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except OSError as exc:
            raise StoreUnavailableError(f"cannot read node store {self.path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise StoreUnavailableError(f"node store {self.path} is corrupt: {exc}") from exc
        if not isinstance(data, dict):
            raise StoreUnavailableError(f"node store {self.path} is not a JSON object")
        try:
            self._values = {bytes.fromhex(key): bytes.fromhex(value) for key, value in data.items()}
        except (TypeError, ValueError) as exc:
            raise StoreUnavailableError(f"node store {self.path} holds non-hex entries") from exc
        logger.debug("Loaded %d entries from node store %s", len(self._values), self.path)

    def _persist(self) -> None:
        tmp = self.path.with_suffix(".tmp")
        data = {key.hex(): value.hex() for key, value in self._values.items()}
        try:
            with tmp.open("w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True)
            tmp.replace(self.path)
        except OSError as exc:
            raise StoreUnavailableError(f"cannot write node store {self.path}: {exc}") from exc

    def get(self, key: bytes) -> Optional[bytes]:
        with self._lock:
            return self._values.get(bytes(key))

    def set(self, key: bytes, value: bytes) -> None:
        key = bytes(key)
        with self._lock:
            previous = self._values.get(key)
            self._values[key] = bytes(value)
            try:
                self._persist()
            except StoreUnavailableError:
                if previous is None:
                    del self._values[key]
                else:
                    self._values[key] = previous
                raise

    def set_many(self, items: Iterable[Tuple[bytes, bytes]]) -> None:
        """Apply every write with a single file rewrite; all of them land or none do."""
        updates = {bytes(key): bytes(value) for key, value in items}
        with self._lock:
            snapshot = dict(self._values)
            self._values.update(updates)
            try:
                self._persist()
            except StoreUnavailableError:
                self._values = snapshot
                raise

    def delete(self, key: bytes) -> None:
        key = bytes(key)
        with self._lock:
            if key not in self._values:
                return
            previous = self._values.pop(key)
            try:
                self._persist()
            except StoreUnavailableError:
                self._values[key] = previous
                raise

    def keys(self, prefix: bytes = b"") -> List[bytes]:
        wanted = bytes(prefix)
        with self._lock:
            return sorted(key for key in self._values if key.startswith(wanted))
