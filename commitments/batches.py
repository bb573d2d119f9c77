"""Payment batch commitments built on the Merkle accumulator.

Each payment becomes one ABI-encoded, domain-separated leaf. Batches are split
into epochs: every epoch is its own fixed-depth accumulator living under an
``epoch:<n>:`` namespace of the shared node store, and a full epoch is sealed
in favour of the next one.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from eth_abi import encode as abi_encode
from eth_utils import is_address, keccak, to_checksum_address

from .accumulator import MerkleAccumulator
from .errors import CapacityError
from .merkle import HashFn, keccak256
from .node_store import META_KEY, NodeStore, PrefixedNodeStore
from .proof import InclusionProof, digest_to_hex

logger = logging.getLogger(__name__)

BATCH_DOMAIN = "payments:batch-commitment:v1"
EPOCH_PREFIX = b"epoch:"


def normalize_recipient(address: str) -> str:
    candidate = (address or "").strip()
    if not is_address(candidate):
        raise ValueError(f"invalid recipient address: {address!r}")
    return to_checksum_address(candidate)


@dataclass(frozen=True)
class PaymentRecord:
    payment_id: str
    recipient: str
    amount_wei: int
    nonce: int = 0

    def __post_init__(self) -> None:
        if not self.payment_id:
            raise ValueError("payment_id must not be empty")
        if self.amount_wei < 0:
            raise ValueError("amount_wei must be >= 0")
        if self.nonce < 0:
            raise ValueError("nonce must be >= 0")
        object.__setattr__(self, "recipient", normalize_recipient(self.recipient))


@dataclass(frozen=True)
class PaymentReceipt:
    epoch: int
    leaf_index: int
    leaf: bytes
    root: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "epoch": self.epoch,
            "leaf_index": self.leaf_index,
            "leaf": digest_to_hex(self.leaf),
            "root": digest_to_hex(self.root),
        }


def payment_leaf(record: PaymentRecord, domain: str = BATCH_DOMAIN, hash_fn: HashFn = keccak256) -> bytes:
    encoded = abi_encode(
        ["string", "bytes32", "address", "uint256", "uint256"],
        [
            domain,
            keccak(text=record.payment_id),
            record.recipient,
            int(record.amount_wei),
            int(record.nonce),
        ],
    )
    return hash_fn(encoded)


def epoch_prefix(epoch: int) -> bytes:
    return EPOCH_PREFIX + str(int(epoch)).encode("ascii") + b":"


class BatchCommitter:
    """Commits payments into epoch-scoped accumulators sharing one node store."""

    def __init__(
        self,
        store: NodeStore,
        depth: int,
        *,
        hash_fn: HashFn = keccak256,
        domain: str = BATCH_DOMAIN,
        journal_path: Optional[Path] = None,
    ) -> None:
        self.store = store
        self.depth = depth
        self.hash_fn = hash_fn
        self.domain = domain
        self.journal_path = journal_path
        self._lock = threading.Lock()
        self._epochs: Dict[int, MerkleAccumulator] = {}
        self._current_epoch = 0
        self._resume()

    def _resume(self) -> None:
        for key in self.store.keys(EPOCH_PREFIX):
            if not key.endswith(b":" + META_KEY):
                continue
            raw_epoch = key[len(EPOCH_PREFIX):].split(b":", 1)[0]
            try:
                epoch = int(raw_epoch)
            except ValueError:
                continue
            self._epochs[epoch] = self._open_epoch(epoch)
        if self._epochs:
            self._current_epoch = max(self._epochs)
            logger.info(
                "Resumed %d batch epoch(s); current epoch %d holds %d payments",
                len(self._epochs),
                self._current_epoch,
                len(self._epochs[self._current_epoch]),
            )
        else:
            self._epochs[0] = self._open_epoch(0)

    def _open_epoch(self, epoch: int) -> MerkleAccumulator:
        return MerkleAccumulator.open(
            PrefixedNodeStore(self.store, epoch_prefix(epoch)),
            self.depth,
            hash_fn=self.hash_fn,
        )

    def _advance_epoch(self) -> MerkleAccumulator:
        sealed = self._current_epoch
        self._current_epoch = sealed + 1
        accumulator = self._open_epoch(self._current_epoch)
        self._epochs[self._current_epoch] = accumulator
        logger.info(
            "Sealed batch epoch %d root=%s; opened epoch %d",
            sealed,
            digest_to_hex(self._epochs[sealed].root()),
            self._current_epoch,
        )
        return accumulator

    @property
    def current_epoch(self) -> int:
        with self._lock:
            return self._current_epoch

    def epochs(self) -> List[int]:
        with self._lock:
            return sorted(self._epochs)

    def accumulator(self, epoch: int) -> MerkleAccumulator:
        with self._lock:
            try:
                return self._epochs[int(epoch)]
            except KeyError as exc:
                raise ValueError(f"unknown epoch {epoch}") from exc

    def leaf_for(self, record: PaymentRecord) -> bytes:
        return payment_leaf(record, self.domain, self.hash_fn)

    def commit(self, record: PaymentRecord) -> PaymentReceipt:
        leaf = self.leaf_for(record)
        with self._lock:
            accumulator = self._epochs[self._current_epoch]
            try:
                leaf_index = accumulator.insert(leaf)
            except CapacityError:
                accumulator = self._advance_epoch()
                leaf_index = accumulator.insert(leaf)
            receipt = PaymentReceipt(
                epoch=self._current_epoch,
                leaf_index=leaf_index,
                leaf=leaf,
                root=accumulator.root(),
            )
        self._write_journal(record, receipt)
        return receipt

    def root(self, epoch: Optional[int] = None) -> bytes:
        target = self.current_epoch if epoch is None else epoch
        return self.accumulator(target).root()

    def proof(self, epoch: int, leaf_index: int) -> InclusionProof:
        return self.accumulator(epoch).get_proof(leaf_index)

    def verify(
        self,
        record: PaymentRecord,
        epoch: int,
        proof: InclusionProof,
        root: Optional[bytes] = None,
    ) -> bool:
        return self.accumulator(epoch).verify(self.leaf_for(record), proof, root=root)

    def _write_journal(self, record: PaymentRecord, receipt: PaymentReceipt) -> None:
        if not self.journal_path:
            return
        entry: Dict[str, object] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": "commit",
            "payment_id": record.payment_id,
            "recipient": record.recipient,
            "amount_wei": str(record.amount_wei),
            "nonce": record.nonce,
        }
        entry.update(receipt.to_dict())
        try:
            self.journal_path.parent.mkdir(parents=True, exist_ok=True)
            with self.journal_path.open("a", encoding="utf-8") as handle:
                json.dump(entry, handle, separators=(",", ":"))
                handle.write("\n")
        except OSError as exc:
            # The journal is an audit convenience; the commitment itself already landed.
            logger.warning("Failed to append batch journal %s: %s", self.journal_path, exc)
