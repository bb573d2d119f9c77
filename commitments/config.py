"""Settings loader for the commitment accumulator."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .accumulator import MerkleAccumulator
from .batches import BATCH_DOMAIN, BatchCommitter
from .merkle import MAX_TREE_DEPTH, HashFn, keccak256, sha256
from .node_store import JsonFileNodeStore, MemoryNodeStore, NodeStore, PrefixedNodeStore

HASH_FUNCTIONS = {
    "keccak256": keccak256,
    "sha256": sha256,
}


class AccumulatorSettings(BaseSettings):
    tree_depth: int = Field(default=20)
    hash_algorithm: str = Field(default="keccak256")
    store_path: Optional[Path] = Field(default=None)
    namespace: str = Field(default="")
    journal_path: Optional[Path] = Field(default=None)
    batch_domain: str = Field(default=BATCH_DOMAIN)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_prefix="COMMITMENTS_",
    )

    @field_validator("tree_depth")
    @classmethod
    def validate_tree_depth(cls, value: int) -> int:
        if value < 1 or value > MAX_TREE_DEPTH:
            raise ValueError(f"COMMITMENTS_TREE_DEPTH must be between 1 and {MAX_TREE_DEPTH}")
        return value

    @field_validator("hash_algorithm", mode="before")
    @classmethod
    def normalize_hash_algorithm(cls, value):  # type: ignore[override]
        candidate = str(value or "").strip().lower().replace("-", "")
        if candidate not in HASH_FUNCTIONS:
            raise ValueError(f"COMMITMENTS_HASH_ALGORITHM must be one of {sorted(HASH_FUNCTIONS)}")
        return candidate

    @field_validator("batch_domain")
    @classmethod
    def validate_batch_domain(cls, value: str) -> str:
        candidate = value.strip()
        if not candidate:
            raise ValueError("COMMITMENTS_BATCH_DOMAIN must not be empty")
        return candidate


def resolve_hash_fn(name: str) -> HashFn:
    try:
        return HASH_FUNCTIONS[name.strip().lower().replace("-", "")]
    except KeyError as exc:
        raise ValueError(f"unknown hash algorithm: {name}") from exc


def build_store(settings: AccumulatorSettings) -> NodeStore:
    store: NodeStore
    if settings.store_path is not None:
        store = JsonFileNodeStore(settings.store_path)
    else:
        store = MemoryNodeStore()
    if settings.namespace:
        store = PrefixedNodeStore(store, settings.namespace.encode("utf-8"))
    return store


def build_accumulator(settings: AccumulatorSettings, store: Optional[NodeStore] = None) -> MerkleAccumulator:
    return MerkleAccumulator.open(
        store if store is not None else build_store(settings),
        settings.tree_depth,
        hash_fn=resolve_hash_fn(settings.hash_algorithm),
    )


def build_committer(settings: AccumulatorSettings, store: Optional[NodeStore] = None) -> BatchCommitter:
    return BatchCommitter(
        store if store is not None else build_store(settings),
        settings.tree_depth,
        hash_fn=resolve_hash_fn(settings.hash_algorithm),
        domain=settings.batch_domain,
        journal_path=settings.journal_path,
    )
