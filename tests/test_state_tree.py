"""
Compressed state-tree collaborators
"""

import pytest
import requests

from voting.errors import AddressAlreadyExists, AddressNotFound, StateTreeUnavailable
from voting.models import Ciphertext
from voting.state_tree import (
    RPC_ADDRESS_ALREADY_EXISTS, InMemoryStateTree, JsonRpcStateTree, compute_merkle_root,
)


@pytest.fixture
def tree():
    return InMemoryStateTree(depth=8)


def _insert(tree, address, data=None):
    return tree.insert(address, tree.get_validity_proof(address), data)


class TestInMemoryStateTree:

    def test_insert_then_prove_inclusion(self, tree):
        _insert(tree, 101)
        _insert(tree, 202)
        proof = tree.get_inclusion_proof(202)

        assert proof["leaf_index"] == 1
        assert len(proof["merkle_path"]) == 8
        assert compute_merkle_root(202, proof["merkle_path"], 1) == tree.get_root()
        assert tree.verify_inclusion_proof(202, proof)
        assert not tree.verify_inclusion_proof(203, proof)

    def test_insert_if_absent(self, tree):
        _insert(tree, 101)
        with pytest.raises(AddressAlreadyExists):
            tree.get_validity_proof(101)
        assert tree.contains(101)
        assert not tree.contains(102)

    def test_first_of_two_racing_inserts_wins(self, tree):
        first = tree.get_validity_proof(55)
        second = tree.get_validity_proof(55)
        tree.insert(55, first)
        with pytest.raises(AddressAlreadyExists):
            tree.insert(55, second)
        assert len(tree.leaves) == 1

    def test_historical_roots_stay_known(self, tree):
        proof = tree.get_inclusion_proof(_insert(tree, 7))
        _insert(tree, 8)
        assert tree.is_known_root(proof["root"])
        assert proof["root"] != tree.get_root()
        assert tree.verify_inclusion_proof(7, proof)

    def test_validity_proof_is_address_bound(self, tree):
        proof = tree.get_validity_proof(1)
        with pytest.raises(ValueError):
            tree.insert(2, proof)

    def test_leaf_data(self, tree):
        data = Ciphertext.user_key(b"opening")
        _insert(tree, 9, data)
        assert tree.get_data(9) == data
        with pytest.raises(AddressNotFound):
            tree.get_data(10)
        with pytest.raises(AddressNotFound):
            tree.get_inclusion_proof(10)

    def test_tree_capacity(self):
        small = InMemoryStateTree(depth=1)
        _insert(small, 1)
        _insert(small, 2)
        with pytest.raises(ValueError):
            _insert(small, 3)


class FakeResponse:

    def __init__(self, body, status_code=200):
        self.body = body
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.body


class FakeSession:
    """Replays canned JSON-RPC responses and records requests"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def post(self, url, json=None, timeout=None):
        self.requests.append(json)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class TestJsonRpcStateTree:

    def test_validity_proof_is_decoded(self):
        session = FakeSession(FakeResponse({"jsonrpc": "2.0", "id": 1, "result": {
            "root": "0x" + "ab" * 32, "rootIndex": 4, "proof": "00ff"}}))
        tree = JsonRpcStateTree("http://tree", session=session)

        proof = tree.get_validity_proof(0x10)
        assert proof == {"address": 0x10, "root": int("ab" * 32, 16), "root_index": 4,
                         "proof": b"\x00\xff"}
        assert session.requests[0]["method"] == "getValidityProof"
        assert session.requests[0]["params"]["address"] == f"0x{0x10:064x}"

    def test_insert_sends_tagged_data(self):
        session = FakeSession(FakeResponse({"result": {"address": "0x0a"}}))
        tree = JsonRpcStateTree("http://tree", session=session)

        address = tree.insert(10, {"root_index": 1, "proof": b"\x01"},
                              Ciphertext.user_key(b"\x02"))
        assert address == 10
        assert session.requests[0]["params"]["data"] == "0002"

    def test_conflict_is_mapped(self):
        session = FakeSession(FakeResponse({"error": {
            "code": RPC_ADDRESS_ALREADY_EXISTS, "message": "exists"}}))
        tree = JsonRpcStateTree("http://tree", session=session)
        with pytest.raises(AddressAlreadyExists):
            tree.insert(10, {"root_index": 1, "proof": b"\x01"})

    @pytest.mark.parametrize("response", [
        requests.ConnectionError("refused"),
        FakeResponse({}, status_code=503),
        FakeResponse({"error": {"code": -32603, "message": "internal"}}),
    ])
    def test_transport_failures_are_transient(self, response):
        tree = JsonRpcStateTree("http://tree", session=FakeSession(response))
        with pytest.raises(StateTreeUnavailable) as excinfo:
            tree.is_known_root(1)
        assert excinfo.value.retryable
