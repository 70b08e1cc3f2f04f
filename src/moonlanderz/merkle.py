from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from eth_utils import keccak
from web3 import Web3

from moonlanderz.const import ZERO_MERKLE_ROOT
from moonlanderz.errors import ProofNotFoundError


class LeafKind(Enum):
    # keccak256(abi.encodePacked(address))
    SIMPLE = "simple"
    # keccak256(abi.encodePacked(address, uint256))
    ALLOWANCE = "allowance"


@dataclass(frozen=True)
class WhitelistEntry:
    address: str
    allowance: Optional[int] = None

    def __post_init__(self) -> None:
        # hashing is byte-sensitive, keep one canonical spelling everywhere
        object.__setattr__(self, "address", Web3.to_checksum_address(self.address))

        if self.allowance is not None:
            if isinstance(self.allowance, bool) or int(self.allowance) != self.allowance:
                raise ValueError(f"Allowance must be an integer, got {self.allowance!r}")
            if self.allowance < 0:
                raise ValueError(f"Allowance must be non-negative, got {self.allowance}")
            object.__setattr__(self, "allowance", int(self.allowance))


def leaf_hash(entry: WhitelistEntry, kind: LeafKind) -> bytes:
    """Hash one entry the way the on-chain verifier builds its leaf."""

    if kind is LeafKind.SIMPLE:
        return bytes(Web3.solidity_keccak(["address"], [entry.address]))

    if entry.allowance is None:
        raise ValueError(f"Entry {entry.address} has no allowance to hash")

    return bytes(
        Web3.solidity_keccak(["address", "uint256"], [entry.address, entry.allowance])
    )


def hash_pair(a: bytes, b: bytes) -> bytes:
    if a <= b:
        return keccak(a + b)
    return keccak(b + a)


class MerkleTree:
    """Sorted-leaf, sorted-pair keccak tree.

    Leaves are sorted before pairing and an odd trailing node is carried up
    to the next layer unchanged, so the root only depends on the set of
    leaves. Proofs validate against OpenZeppelin's ``MerkleProof.verify``.
    """

    def __init__(self, leaves: Iterable[bytes], kind: Optional[LeafKind] = None) -> None:
        self.kind = kind
        self.leaves: List[bytes] = sorted(bytes(leaf) for leaf in leaves)
        self.layers = self._build_layers(self.leaves)

    @classmethod
    def from_entries(cls, entries: Iterable[WhitelistEntry], kind: LeafKind) -> "MerkleTree":
        return cls((leaf_hash(entry, kind) for entry in entries), kind=kind)

    @staticmethod
    def _build_layers(leaves: List[bytes]) -> List[List[bytes]]:
        layers = [leaves]

        while len(layers[-1]) > 1:
            current = layers[-1]
            next_layer = []
            for i in range(0, len(current), 2):
                if i + 1 < len(current):
                    next_layer.append(hash_pair(current[i], current[i + 1]))
                else:
                    next_layer.append(current[i])
            layers.append(next_layer)

        return layers

    def __len__(self) -> int:
        return len(self.leaves)

    @property
    def root(self) -> bytes:
        if not self.leaves:
            return ZERO_MERKLE_ROOT
        return self.layers[-1][0]

    @property
    def hex_root(self) -> str:
        return "0x" + self.root.hex()

    def proof(self, leaf: bytes) -> List[bytes]:
        try:
            index = self.leaves.index(bytes(leaf))
        except ValueError:
            raise ProofNotFoundError(f"Leaf 0x{bytes(leaf).hex()} is not in the tree") from None

        path = []
        for layer in self.layers[:-1]:
            sibling = index ^ 1
            if sibling < len(layer):
                path.append(layer[sibling])
            index //= 2

        return path

    def proof_for(self, entry: WhitelistEntry) -> List[bytes]:
        if self.kind is None:
            raise ValueError("Tree was built from raw leaves, use proof(leaf) instead")

        try:
            return self.proof(leaf_hash(entry, self.kind))
        except ProofNotFoundError:
            raise ProofNotFoundError(f"{entry} is not whitelisted") from None

    def hex_proof_for(self, entry: WhitelistEntry) -> List[str]:
        return ["0x" + node.hex() for node in self.proof_for(entry)]


def build_tree(entries: Iterable[WhitelistEntry], kind: LeafKind) -> MerkleTree:
    return MerkleTree.from_entries(entries, kind)


def root(tree: MerkleTree) -> bytes:
    return tree.root


def proof(tree: MerkleTree, entry: WhitelistEntry) -> List[bytes]:
    return tree.proof_for(entry)


def verify_proof(root: bytes, proof: Sequence[bytes], leaf: bytes) -> bool:
    computed = bytes(leaf)
    for node in proof:
        computed = hash_pair(computed, bytes(node))
    return computed == bytes(root)
