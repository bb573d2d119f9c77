"""Inclusion proof container and its JSON wire form."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

from .errors import MalformedProofError


def digest_to_hex(value: bytes) -> str:
    return "0x" + bytes(value).hex()


def digest_from_hex(value: Any, *, name: str, digest_size: Optional[int] = None) -> bytes:
    if not isinstance(value, str):
        raise MalformedProofError(f"{name} must be a hex string")
    raw = value.strip()
    if raw.startswith("0x") or raw.startswith("0X"):
        raw = raw[2:]
    try:
        decoded = bytes.fromhex(raw)
    except ValueError as exc:
        raise MalformedProofError(f"{name} must be hex") from exc
    if digest_size is not None and len(decoded) != digest_size:
        raise MalformedProofError(f"{name} must be {digest_size} bytes, got {len(decoded)}")
    return decoded


@dataclass(frozen=True)
class InclusionProof:
    """Sibling path for one leaf, ordered from the leaf level up to just below the root."""

    leaf_index: int
    siblings: Tuple[bytes, ...]

    def __post_init__(self) -> None:
        # Accept any iterable of digests but store an immutable tuple.
        object.__setattr__(self, "siblings", tuple(self.siblings))

    @property
    def depth(self) -> int:
        return len(self.siblings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "leaf_index": int(self.leaf_index),
            "siblings": [digest_to_hex(item) for item in self.siblings],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), sort_keys=True)

    @classmethod
    def from_dict(
        cls,
        payload: Any,
        *,
        depth: Optional[int] = None,
        digest_size: Optional[int] = 32,
    ) -> "InclusionProof":
        if not isinstance(payload, dict):
            raise MalformedProofError("proof must be a JSON object")
        leaf_index = payload.get("leaf_index")
        if isinstance(leaf_index, bool) or not isinstance(leaf_index, int) or leaf_index < 0:
            raise MalformedProofError("leaf_index must be an unsigned integer")
        raw_siblings = payload.get("siblings")
        if not isinstance(raw_siblings, list):
            raise MalformedProofError("siblings must be a list")
        if depth is not None and len(raw_siblings) != int(depth):
            raise MalformedProofError(
                f"proof carries {len(raw_siblings)} siblings, expected {int(depth)}"
            )
        if leaf_index >= (1 << len(raw_siblings)):
            raise MalformedProofError("leaf_index does not fit in a tree of this depth")
        siblings = _decode_siblings(raw_siblings, digest_size=digest_size)
        return cls(leaf_index=leaf_index, siblings=siblings)

    @classmethod
    def from_json(
        cls,
        raw: str,
        *,
        depth: Optional[int] = None,
        digest_size: Optional[int] = 32,
    ) -> "InclusionProof":
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MalformedProofError("proof is not valid JSON") from exc
        return cls.from_dict(payload, depth=depth, digest_size=digest_size)


def _decode_siblings(items: Iterable[Any], *, digest_size: Optional[int]) -> Tuple[bytes, ...]:
    return tuple(
        digest_from_hex(item, name=f"siblings[{position}]", digest_size=digest_size)
        for position, item in enumerate(items)
    )
