"""Incremental fixed-depth Merkle accumulator.

Leaves are appended left to right. Only the most recent left-hand subtree root
per level (``filled``) and the empty-subtree table (``zeros``) are needed to
advance the root in O(depth). Every node on each insertion path is also written
to the node store, which is what makes proofs for older leaves possible.

The metadata record is the commit point of an insert. Nodes written before a
failed metadata write can only sit on the path of the uncommitted leaf, so the
store is read only for subtrees whose leaves are all committed. The partial
subtrees on the path of the newest leaf are held in memory, or rebuilt from
complete subtrees when a tree is reopened.
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple

from .errors import CapacityError, StoreUnavailableError, UnknownLeafError
from .merkle import HashFn, digest_size, hash_node, keccak256, max_depth, verify_inclusion_proof, zero_hashes
from .node_store import META_KEY, MemoryNodeStore, NodeStore, node_key, write_many
from .proof import InclusionProof

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class MerkleAccumulator:
    def __init__(
        self,
        depth: int,
        hash_fn: HashFn = keccak256,
        store: Optional[NodeStore] = None,
    ) -> None:
        limit = max_depth(hash_fn)
        if isinstance(depth, bool) or not isinstance(depth, int) or depth < 1 or depth > limit:
            raise CapacityError(f"depth must be an integer in [1, {limit}], got {depth!r}")
        self._depth = depth
        self._hash_fn = hash_fn
        self._digest_size = digest_size(hash_fn)
        self._zeros = zero_hashes(depth, hash_fn)
        self.store: NodeStore = store if store is not None else MemoryNodeStore()
        self._lock = ReadWriteLock()

        self._filled: Tuple[bytes, ...] = self._zeros[:depth]
        # Digests on the path of the newest leaf, levels 0..depth-1.
        self._path: Tuple[bytes, ...] = self._zeros[:depth]
        self._next_index = 0
        self._root = self._zeros[depth]

    # ------------------------------------------------------------------
    # Construction from persisted state
    # ------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        store: NodeStore,
        depth: int,
        hash_fn: HashFn = keccak256,
    ) -> "MerkleAccumulator":
        """Start a new empty tree in ``store``, refusing to clobber an existing one."""
        if store.get(META_KEY) is not None:
            raise ValueError("store already holds an accumulator; use MerkleAccumulator.open")
        accumulator = cls(depth, hash_fn=hash_fn, store=store)
        store.set(META_KEY, accumulator._encode_meta(0))
        return accumulator

    @classmethod
    def open(
        cls,
        store: NodeStore,
        depth: int,
        hash_fn: HashFn = keccak256,
    ) -> "MerkleAccumulator":
        """Resume the tree persisted in ``store``, or start one if the store is empty."""
        raw_meta = store.get(META_KEY)
        if raw_meta is None:
            return cls.create(store, depth, hash_fn=hash_fn)

        accumulator = cls(depth, hash_fn=hash_fn, store=store)
        meta = accumulator._decode_meta(raw_meta)
        if meta["depth"] != depth:
            raise ValueError(f"store holds a depth-{meta['depth']} tree, not depth {depth}")
        if meta["digest_size"] != accumulator._digest_size:
            raise ValueError("store was built with a different hash width")
        next_index = meta["next_index"]
        if next_index < 0 or next_index > accumulator.capacity:
            raise StoreUnavailableError(f"stored next_index {next_index} is out of range")

        if next_index:
            accumulator._rebuild_frontier(next_index)
        accumulator._next_index = next_index
        logger.info("Resumed depth-%d accumulator with %d leaves", depth, next_index)
        return accumulator

    def _encode_meta(self, next_index: int) -> bytes:
        payload = {
            "depth": self._depth,
            "digest_size": self._digest_size,
            "next_index": next_index,
        }
        return json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")

    @staticmethod
    def _decode_meta(raw: bytes) -> dict:
        try:
            meta = json.loads(bytes(raw).decode("utf-8"))
            return {
                "depth": int(meta["depth"]),
                "digest_size": int(meta["digest_size"]),
                "next_index": int(meta["next_index"]),
            }
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreUnavailableError("accumulator metadata is unreadable") from exc

    def _read_node(self, level: int, index: int) -> bytes:
        stored = self.store.get(node_key(level, index))
        if stored is None:
            # Only called for subtrees that hold leaves; a gap means lost data.
            raise StoreUnavailableError(f"node ({level}, {index}) missing from store")
        if len(stored) != self._digest_size:
            raise StoreUnavailableError(f"node ({level}, {index}) has width {len(stored)}")
        return bytes(stored)

    def _rebuild_frontier(self, next_index: int) -> None:
        """Recompute ``filled``, the newest leaf's path and the root from complete subtrees.

        Only the newest leaf and left siblings of its ancestors are read. All of
        them cover committed leaves only, so path nodes left behind by a failed
        insert never leak into the resumed root.
        """
        last = next_index - 1
        current = self._read_node(0, last)
        filled: List[bytes] = []
        path: List[bytes] = []
        for level in range(self._depth):
            index = last >> level
            path.append(current)
            if index & 1:
                left = self._read_node(level, index - 1)
                filled.append(left)
                current = hash_node(left, current, self._hash_fn)
            else:
                filled.append(current)
                current = hash_node(current, self._zeros[level], self._hash_fn)
        self._filled = tuple(filled)
        self._path = tuple(path)
        self._root = current

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def depth(self) -> int:
        return self._depth

    @property
    def capacity(self) -> int:
        return 1 << self._depth

    @property
    def hash_fn(self) -> HashFn:
        return self._hash_fn

    @property
    def digest_size(self) -> int:
        return self._digest_size

    @property
    def zero_hashes(self) -> Tuple[bytes, ...]:
        return self._zeros

    @property
    def next_index(self) -> int:
        with self._lock.read():
            return self._next_index

    def __len__(self) -> int:
        return self.next_index

    def is_full(self) -> bool:
        return self.next_index >= self.capacity

    # ------------------------------------------------------------------
    # Tree operations
    # ------------------------------------------------------------------
    def root(self) -> bytes:
        with self._lock.read():
            return self._root

    def insert(self, leaf: bytes) -> int:
        leaf = bytes(leaf)
        if len(leaf) != self._digest_size:
            raise ValueError(f"leaf must be {self._digest_size} bytes, got {len(leaf)}")

        with self._lock.write():
            leaf_index = self._next_index
            if leaf_index >= self.capacity:
                raise CapacityError(f"accumulator is full ({self.capacity} leaves)")

            filled: List[bytes] = list(self._filled)
            path: List[bytes] = []
            writes = []
            current = leaf
            index = leaf_index
            for level in range(self._depth):
                writes.append((node_key(level, index), current))
                path.append(current)
                if index & 1:
                    current = hash_node(filled[level], current, self._hash_fn)
                else:
                    filled[level] = current
                    current = hash_node(current, self._zeros[level], self._hash_fn)
                index >>= 1
            writes.append((node_key(self._depth, 0), current))

            try:
                write_many(self.store, writes)
                self.store.set(META_KEY, self._encode_meta(leaf_index + 1))
            except StoreUnavailableError:
                logger.warning("Node store write failed while inserting leaf %d", leaf_index)
                raise

            self._filled = tuple(filled)
            self._path = tuple(path)
            self._next_index = leaf_index + 1
            self._root = current

        logger.debug("Inserted leaf %d root=0x%s", leaf_index, current.hex())
        return leaf_index

    def get_proof(self, leaf_index: int) -> InclusionProof:
        with self._lock.read():
            next_index = self._next_index
            if isinstance(leaf_index, bool) or not isinstance(leaf_index, int):
                raise TypeError("leaf_index must be an int")
            if leaf_index < 0 or leaf_index >= next_index:
                raise UnknownLeafError(leaf_index, next_index)

            newest = next_index - 1
            siblings: List[bytes] = []
            for level in range(self._depth):
                sibling_index = (leaf_index >> level) ^ 1
                if (sibling_index << level) >= next_index:
                    siblings.append(self._zeros[level])
                elif sibling_index == newest >> level:
                    # May still be partial; the stored copy is not trusted.
                    siblings.append(self._path[level])
                else:
                    siblings.append(self._read_node(level, sibling_index))
        return InclusionProof(leaf_index=leaf_index, siblings=tuple(siblings))

    def verify(self, leaf: bytes, proof: InclusionProof, root: Optional[bytes] = None) -> bool:
        expected_root = self.root() if root is None else root
        return verify_inclusion_proof(
            expected_root,
            leaf,
            proof,
            hash_fn=self._hash_fn,
            depth=self._depth,
        )
