"""
Compressed state-tree collaborator.

Nullifiers and commitments live here as addressed leaves. ``insert`` is
insert-if-absent and is the only arbitration point between concurrent
submissions: whichever insert lands first wins and every other one fails
with ``AddressAlreadyExists``.
"""

import hashlib
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import requests

from zk.poseidon import poseidon_hash

from .errors import AddressAlreadyExists, AddressNotFound, StateTreeUnavailable
from .models import Ciphertext

logger = logging.getLogger(__name__)

TREE_DEPTH = 32


def compute_merkle_root(leaf: int, siblings: List[int], leaf_index: int) -> int:
    current = leaf
    for level, sibling in enumerate(siblings):
        if (leaf_index >> level) & 1:
            current = poseidon_hash([sibling, current])
        else:
            current = poseidon_hash([current, sibling])
    return current


class StateTree(ABC):
    """Interface of the compressed state-tree service"""

    @abstractmethod
    def get_validity_proof(self, address: int) -> Dict[str, Any]:
        """Non-inclusion proof for an address that is not yet present"""

    @abstractmethod
    def get_inclusion_proof(self, address: int) -> Dict[str, Any]:
        """Returns proof, merkle_path, leaf_index and root of an existing leaf"""

    @abstractmethod
    def insert(self, address: int, validity_proof: Dict[str, Any],
               data: Optional[Ciphertext] = None) -> int:
        """Insert a leaf at a new address, returning the address"""

    @abstractmethod
    def is_known_root(self, root: int) -> bool:
        """Whether ``root`` is a current or historical tree root"""

    @abstractmethod
    def get_data(self, address: int) -> Optional[Ciphertext]:
        """Encrypted preimage stored with a leaf, if any"""

    def verify_inclusion_proof(self, address: int, proof: Dict[str, Any]) -> bool:
        root = proof.get("root")
        if root is None or not self.is_known_root(root):
            return False
        return compute_merkle_root(address, proof["merkle_path"], proof["leaf_index"]) == root

    def contains(self, address: int) -> bool:
        try:
            self.get_inclusion_proof(address)
        except AddressNotFound:
            return False
        return True

# ============================================================================
# IN-MEMORY TREE
# ============================================================================


@dataclass
class InMemoryStateTree(StateTree):
    """Append-only Poseidon merkle tree with an address index"""
    depth: int = TREE_DEPTH
    nodes: Dict[Tuple[int, int], int] = field(default_factory=dict)  # (level, index) -> hash
    leaves: Dict[int, int] = field(default_factory=dict)             # address -> leaf index
    data: Dict[int, Optional[Ciphertext]] = field(default_factory=dict)
    roots: List[int] = field(default_factory=list)

    def __post_init__(self):
        self._lock = threading.Lock()
        self.empty_nodes = self._compute_empty_nodes()
        self.roots.append(self.get_root())

    def _compute_empty_nodes(self) -> List[int]:
        """Hash of an empty subtree at each level, leaf level first"""
        empty = [0]
        for _ in range(self.depth):
            empty.append(poseidon_hash([empty[-1], empty[-1]]))
        return empty

    def _node(self, level: int, index: int) -> int:
        return self.nodes.get((level, index), self.empty_nodes[level])

    def get_root(self) -> int:
        return self._node(self.depth, 0)

    def _append(self, leaf: int) -> int:
        leaf_index = len(self.leaves)
        if leaf_index >= (1 << self.depth):
            raise ValueError(f"State tree of depth {self.depth} is full")

        self.nodes[(0, leaf_index)] = leaf
        index = leaf_index
        for level in range(self.depth):
            index //= 2
            left = self._node(level, 2 * index)
            right = self._node(level, 2 * index + 1)
            self.nodes[(level + 1, index)] = poseidon_hash([left, right])
        self.roots.append(self.get_root())
        return leaf_index

    def _path(self, leaf_index: int) -> List[int]:
        return [self._node(level, (leaf_index >> level) ^ 1) for level in range(self.depth)]

    def get_validity_proof(self, address: int) -> Dict[str, Any]:
        with self._lock:
            if address in self.leaves:
                raise AddressAlreadyExists(f"Address {address:#x} already exists")
            root = self.get_root()
            return {
                "address": address,
                "root": root,
                "root_index": len(self.roots) - 1,
                "proof": hashlib.sha256(
                    address.to_bytes(32, 'big') + root.to_bytes(32, 'big')).digest(),
            }

    def get_inclusion_proof(self, address: int) -> Dict[str, Any]:
        with self._lock:
            if address not in self.leaves:
                raise AddressNotFound(f"Address {address:#x} not found")
            leaf_index = self.leaves[address]
            root = self.get_root()
            path = self._path(leaf_index)
            return {
                "proof": hashlib.sha256(
                    address.to_bytes(32, 'big') + root.to_bytes(32, 'big')).digest(),
                "merkle_path": path,
                "leaf_index": leaf_index,
                "root": root,
            }

    def insert(self, address: int, validity_proof: Dict[str, Any],
               data: Optional[Ciphertext] = None) -> int:
        if validity_proof.get("address") != address:
            raise ValueError("Validity proof was issued for a different address")
        if validity_proof.get("root") not in self.roots:
            raise ValueError("Validity proof references an unknown root")

        with self._lock:
            if address in self.leaves:
                raise AddressAlreadyExists(f"Address {address:#x} already exists")
            self.leaves[address] = self._append(address)
            self.data[address] = data

        logger.debug(f"Inserted address {address:#x} at leaf {self.leaves[address]}")
        return address

    def is_known_root(self, root: int) -> bool:
        return root in self.roots

    def get_data(self, address: int) -> Optional[Ciphertext]:
        if address not in self.leaves:
            raise AddressNotFound(f"Address {address:#x} not found")
        return self.data[address]

# ============================================================================
# JSON-RPC CLIENT
# ============================================================================

RPC_ADDRESS_ALREADY_EXISTS = -32001
RPC_ADDRESS_NOT_FOUND = -32002


class JsonRpcStateTree(StateTree):
    """Client for a remote state-tree service speaking JSON-RPC 2.0 over HTTP"""

    def __init__(self, url: str, timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._ids = itertools.count(1)

    def _call(self, method: str, params: Dict[str, Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as e:
            raise StateTreeUnavailable(f"{method} failed: {e}") from e
        except ValueError as e:
            raise StateTreeUnavailable(f"{method} returned invalid JSON") from e

        error = body.get("error")
        if error:
            code = error.get("code")
            message = error.get("message", "")
            if code == RPC_ADDRESS_ALREADY_EXISTS:
                raise AddressAlreadyExists(message)
            if code == RPC_ADDRESS_NOT_FOUND:
                raise AddressNotFound(message)
            raise StateTreeUnavailable(f"{method} error {code}: {message}")
        return body.get("result")

    @staticmethod
    def _hex(value: int) -> str:
        return f"0x{value:064x}"

    def get_validity_proof(self, address: int) -> Dict[str, Any]:
        result = self._call("getValidityProof", {"address": self._hex(address)})
        return {
            "address": address,
            "root": int(result["root"], 16),
            "root_index": result["rootIndex"],
            "proof": bytes.fromhex(result["proof"]),
        }

    def get_inclusion_proof(self, address: int) -> Dict[str, Any]:
        result = self._call("getInclusionProof", {"address": self._hex(address)})
        return {
            "proof": bytes.fromhex(result["proof"]),
            "merkle_path": [int(s, 16) for s in result["merklePath"]],
            "leaf_index": result["leafIndex"],
            "root": int(result["root"], 16),
        }

    def insert(self, address: int, validity_proof: Dict[str, Any],
               data: Optional[Ciphertext] = None) -> int:
        params = {
            "address": self._hex(address),
            "rootIndex": validity_proof["root_index"],
            "proof": validity_proof["proof"].hex(),
        }
        if data is not None:
            params["data"] = data.to_bytes().hex()
        result = self._call("insert", params)
        return int(result["address"], 16)

    def is_known_root(self, root: int) -> bool:
        return bool(self._call("isKnownRoot", {"root": self._hex(root)}))

    def get_data(self, address: int) -> Optional[Ciphertext]:
        result = self._call("getLeafData", {"address": self._hex(address)})
        if not result:
            return None
        return Ciphertext.from_bytes(bytes.fromhex(result))
