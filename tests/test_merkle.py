import hashlib

import pytest
from eth_utils import keccak

from commitments import merkle
from commitments.errors import MalformedProofError
from commitments.proof import InclusionProof


def test_zero_hashes_chain_from_empty_leaf():
    zeros = merkle.zero_hashes(3)
    assert len(zeros) == 4
    assert zeros[0] == keccak(b"\x00" * 32)
    for level in range(1, 4):
        assert zeros[level] == keccak(zeros[level - 1] + zeros[level - 1])


def test_zero_hashes_follow_injected_hash():
    zeros = merkle.zero_hashes(2, merkle.sha256)
    assert zeros[0] == hashlib.sha256(b"\x00" * 32).digest()
    assert zeros[2] == hashlib.sha256(zeros[1] + zeros[1]).digest()


def test_hash_node_is_order_sensitive():
    left = b"l" * 32
    right = b"r" * 32
    assert merkle.hash_node(left, right) == keccak(left + right)
    assert merkle.hash_node(left, right) != merkle.hash_node(right, left)


def test_max_depth_is_bounded_by_digest_width():
    assert merkle.max_depth(merkle.keccak256) == merkle.MAX_TREE_DEPTH

    def tiny(data: bytes) -> bytes:
        return hashlib.sha256(data).digest()[:4]

    assert merkle.max_depth(tiny) == 32


def test_verify_small_tree_by_hand(leaves):
    a, b = leaves[0], leaves[1]
    zeros = merkle.zero_hashes(2, merkle.sha256)
    left = merkle.hash_node(a, b, merkle.sha256)
    root = merkle.hash_node(left, zeros[1], merkle.sha256)

    proof = InclusionProof(leaf_index=1, siblings=(a, zeros[1]))
    assert merkle.verify_inclusion_proof(root, b, proof, hash_fn=merkle.sha256, depth=2)
    assert not merkle.verify_inclusion_proof(root, a, proof, hash_fn=merkle.sha256, depth=2)

    mirrored = InclusionProof(leaf_index=0, siblings=(a, zeros[1]))
    assert not merkle.verify_inclusion_proof(root, b, mirrored, hash_fn=merkle.sha256, depth=2)


def test_verify_rejects_wrong_sibling_count_and_index(leaves):
    zeros = merkle.zero_hashes(2, merkle.sha256)
    short = InclusionProof(leaf_index=0, siblings=(zeros[0],))
    assert not merkle.verify_inclusion_proof(zeros[2], leaves[0], short, hash_fn=merkle.sha256, depth=2)

    out_of_range = InclusionProof(leaf_index=4, siblings=(zeros[0], zeros[1]))
    assert not merkle.verify_inclusion_proof(zeros[2], leaves[0], out_of_range, hash_fn=merkle.sha256, depth=2)

    negative = InclusionProof(leaf_index=-1, siblings=(zeros[0], zeros[1]))
    assert not merkle.verify_inclusion_proof(zeros[2], leaves[0], negative, hash_fn=merkle.sha256, depth=2)


def test_verify_raises_on_wrong_digest_width(leaves):
    zeros = merkle.zero_hashes(2, merkle.sha256)
    proof = InclusionProof(leaf_index=0, siblings=(zeros[0], zeros[1]))

    with pytest.raises(MalformedProofError):
        merkle.verify_inclusion_proof(zeros[2], leaves[0][:31], proof, hash_fn=merkle.sha256, depth=2)
    with pytest.raises(MalformedProofError):
        merkle.verify_inclusion_proof(zeros[2][:16], leaves[0], proof, hash_fn=merkle.sha256, depth=2)

    truncated = InclusionProof(leaf_index=0, siblings=(zeros[0], zeros[1][:20]))
    with pytest.raises(MalformedProofError):
        merkle.verify_inclusion_proof(zeros[2], leaves[0], truncated, hash_fn=merkle.sha256, depth=2)


def test_verify_requires_depth_and_rejects_interior_nodes_posing_as_leaves(leaves):
    a, b = leaves[0], leaves[1]
    zeros = merkle.zero_hashes(2, merkle.sha256)
    left = merkle.hash_node(a, b, merkle.sha256)
    root = merkle.hash_node(left, zeros[1], merkle.sha256)

    bare = InclusionProof(leaf_index=0, siblings=())
    with pytest.raises(TypeError):
        merkle.verify_inclusion_proof(root, root, bare, hash_fn=merkle.sha256)
    assert not merkle.verify_inclusion_proof(root, root, bare, hash_fn=merkle.sha256, depth=2)

    one_level = InclusionProof(leaf_index=0, siblings=(zeros[1],))
    assert not merkle.verify_inclusion_proof(root, left, one_level, hash_fn=merkle.sha256, depth=2)


def test_caches_are_bounded():
    assert merkle.zero_hashes.cache_info().maxsize is not None
    assert merkle.digest_size.cache_info().maxsize is not None

    for n in range(merkle.zero_hashes.cache_info().maxsize + 8):
        merkle.zero_hashes(1, lambda data, salt=n: hashlib.sha256(bytes([salt % 256]) + data).digest())
    assert merkle.zero_hashes.cache_info().currsize <= merkle.zero_hashes.cache_info().maxsize
