import json

import pytest

from commitments.errors import MalformedProofError
from commitments.proof import InclusionProof, digest_from_hex


def _proof():
    return InclusionProof(leaf_index=2, siblings=[b"\x01" * 32, b"\x02" * 32])


def test_proof_serializes_to_wire_shape():
    proof = _proof()
    assert proof.depth == 2
    assert isinstance(proof.siblings, tuple)
    assert proof.to_dict() == {
        "leaf_index": 2,
        "siblings": ["0x" + "01" * 32, "0x" + "02" * 32],
    }
    parsed = InclusionProof.from_json(proof.to_json(), depth=2)
    assert parsed == proof


def test_proof_is_immutable():
    proof = _proof()
    with pytest.raises(AttributeError):
        proof.leaf_index = 3  # type: ignore[misc]


def test_from_dict_rejects_wrong_sibling_count():
    payload = _proof().to_dict()
    with pytest.raises(MalformedProofError, match="expected 3"):
        InclusionProof.from_dict(payload, depth=3)


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"leaf_index": "2", "siblings": []},
        {"leaf_index": True, "siblings": []},
        {"leaf_index": -1, "siblings": []},
        {"leaf_index": 4, "siblings": ["0x" + "00" * 32, "0x" + "00" * 32]},
        {"leaf_index": 0, "siblings": "0x00"},
        {"leaf_index": 0, "siblings": ["0xzz"]},
        {"leaf_index": 0, "siblings": ["0x" + "00" * 31]},
        {"leaf_index": 0, "siblings": [17]},
    ],
)
def test_from_dict_rejects_malformed_payloads(payload):
    with pytest.raises(MalformedProofError):
        InclusionProof.from_dict(payload)


def test_from_json_rejects_invalid_json():
    with pytest.raises(MalformedProofError):
        InclusionProof.from_json("{not json")


def test_digest_from_hex_accepts_unprefixed_hex():
    assert digest_from_hex("ab" * 32, name="root", digest_size=32) == b"\xab" * 32
    assert json.loads(_proof().to_json())["leaf_index"] == 2
