#!/usr/bin/env python3
"""Offline verifier for accumulator inclusion proofs.

Checks a proof JSON document ({"leaf_index": ..., "siblings": [...]}) against a
published root and a leaf digest without access to the tree itself.

Exit codes: 0 valid, 1 invalid, 2 malformed input, 3 proof could not be read.
--depth and --hash default to COMMITMENTS_TREE_DEPTH and COMMITMENTS_HASH_ALGORITHM.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from commitments.config import HASH_FUNCTIONS, AccumulatorSettings, resolve_hash_fn
from commitments.errors import MalformedProofError
from commitments.merkle import digest_size, verify_inclusion_proof
from commitments.proof import InclusionProof, digest_from_hex

logger = logging.getLogger("verify_proof")


def _read_proof(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Verify a Merkle accumulator inclusion proof.")
    ap.add_argument("--proof", required=True, help="Path to proof JSON ('-' for stdin)")
    ap.add_argument("--root", required=True, help="Expected root digest (0x hex)")
    ap.add_argument("--leaf", required=True, help="Leaf digest (0x hex)")
    ap.add_argument("--depth", type=int, default=None, help="Tree depth (default: configured tree depth); other sibling counts are rejected")
    ap.add_argument("--hash", default=None, choices=sorted(HASH_FUNCTIONS), help="Tree hash function (default: configured algorithm)")
    ap.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s:%(lineno)d | %(message)s",
        stream=sys.stderr,
    )

    if args.depth is None or args.hash is None:
        settings = AccumulatorSettings()
        if args.depth is None:
            args.depth = settings.tree_depth
        if args.hash is None:
            args.hash = settings.hash_algorithm

    hash_fn = resolve_hash_fn(args.hash)
    width = digest_size(hash_fn)
    try:
        proof = InclusionProof.from_json(_read_proof(args.proof), depth=args.depth, digest_size=width)
        root = digest_from_hex(args.root, name="root", digest_size=width)
        leaf = digest_from_hex(args.leaf, name="leaf", digest_size=width)
        ok = verify_inclusion_proof(root, leaf, proof, hash_fn=hash_fn, depth=args.depth)
    except OSError as exc:
        logger.error("Cannot read proof %s: %s", args.proof, exc)
        print(json.dumps({"status": "error", "error": f"cannot read proof: {exc}"}))
        return 3
    except MalformedProofError as exc:
        logger.error("Malformed proof: %s", exc)
        print(json.dumps({"status": "malformed", "error": str(exc)}))
        return 2

    logger.debug("Checked leaf_index=%d depth=%d", proof.leaf_index, proof.depth)
    print(
        json.dumps(
            {
                "status": "ok" if ok else "invalid",
                "leaf_index": proof.leaf_index,
                "depth": proof.depth,
                "root": args.root,
            }
        )
    )
    return 0 if ok else 1


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except KeyboardInterrupt:
        sys.stderr.write("Interrupted\n")
        raise SystemExit(130)
