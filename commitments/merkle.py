"""Merkle helpers for fixed-depth, append-only commitment trees.

Conventions shared by the accumulator and every verifier:
- node_hash  = H(left || right), order-sensitive, no domain prefix
- empty leaf = H(0x00 * digest_size)
- zero[i]    = node_hash(zero[i-1], zero[i-1]), the root of an empty subtree of height i
- position   = insertion index; bit i of the index selects left (0) or right (1) at level i
"""

from __future__ import annotations

import hashlib
from functools import lru_cache
from typing import TYPE_CHECKING, Callable, Tuple

from eth_utils import keccak

from .errors import MalformedProofError

if TYPE_CHECKING:
    from .proof import InclusionProof


HashFn = Callable[[bytes], bytes]

MAX_TREE_DEPTH = 64


def keccak256(data: bytes) -> bytes:
    return keccak(bytes(data))


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(bytes(data)).digest()


@lru_cache(maxsize=32)
def digest_size(hash_fn: HashFn) -> int:
    return len(hash_fn(b""))


def max_depth(hash_fn: HashFn) -> int:
    """Deepest tree whose leaf indices still fit in the digest's bit width."""
    return min(MAX_TREE_DEPTH, digest_size(hash_fn) * 8)


def hash_node(left: bytes, right: bytes, hash_fn: HashFn = keccak256) -> bytes:
    return hash_fn(bytes(left) + bytes(right))


@lru_cache(maxsize=32)
def zero_hashes(depth: int, hash_fn: HashFn = keccak256) -> Tuple[bytes, ...]:
    if depth < 0:
        raise ValueError("depth must be >= 0")
    current = hash_fn(b"\x00" * digest_size(hash_fn))
    zeros = [current]
    for _ in range(depth):
        current = hash_node(current, current, hash_fn)
        zeros.append(current)
    return tuple(zeros)


def compute_root(leaf: bytes, leaf_index: int, siblings, hash_fn: HashFn = keccak256) -> bytes:
    computed = bytes(leaf)
    index = int(leaf_index)
    for sibling in siblings:
        if index & 1:
            computed = hash_node(sibling, computed, hash_fn)
        else:
            computed = hash_node(computed, sibling, hash_fn)
        index >>= 1
    return computed


def _require_width(value: bytes, width: int, name: str) -> None:
    if not isinstance(value, (bytes, bytearray)):
        raise MalformedProofError(f"{name} must be bytes")
    if len(value) != width:
        raise MalformedProofError(f"{name} must be {width} bytes, got {len(value)}")


def verify_inclusion_proof(
    root: bytes,
    leaf: bytes,
    proof: "InclusionProof",
    *,
    hash_fn: HashFn = keccak256,
    depth: int,
) -> bool:
    """Check that ``leaf`` sits at ``proof.leaf_index`` under ``root``.

    ``depth`` is the expected tree height and must always be given.
    A sibling count that disagrees with ``depth`` or an index that cannot exist
    in a tree of that height is simply not a valid proof and yields False.
    Digests of the wrong width cannot be interpreted and raise MalformedProofError.
    """
    width = digest_size(hash_fn)
    _require_width(root, width, "root")
    _require_width(leaf, width, "leaf")
    siblings = tuple(proof.siblings)
    for position, sibling in enumerate(siblings):
        _require_width(sibling, width, f"siblings[{position}]")

    if len(siblings) != int(depth):
        return False
    leaf_index = int(proof.leaf_index)
    if leaf_index < 0 or leaf_index >= (1 << len(siblings)):
        return False

    computed = compute_root(leaf, leaf_index, siblings, hash_fn)
    return bytes(computed) == bytes(root)
