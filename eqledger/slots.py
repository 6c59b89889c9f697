"""
Namespaced storage slot derivation.

A namespace string is turned into the base slot of a storage region:

    keccak256(abi.encode(uint256(keccak256(namespace)) - 1)) & ~bytes32(uint256(0xff))

The low byte of every base slot is zero and a region's fields sit at small
offsets from it. Slots are computed once per namespace at import
time and used as constants.

The proxy's implementation pointer uses the plain ERC-1967 form,
``keccak256(label) - 1``.
"""

from __future__ import annotations

from eqledger.hardening import CryptoUtils, Validators
from eqledger.word import Word

StorageSlot = Word

_MOD = 1 << 256


def compute_slot(namespace: str) -> StorageSlot:
    """Compute the base slot for a storage namespace."""
    namespace = Validators.validate_string(namespace, "namespace").unwrap()

    namespace_hash = CryptoUtils.keccak256_int(namespace)
    decremented = (namespace_hash - 1) % _MOD
    encoded = CryptoUtils.abi_encode(["uint256"], [decremented])
    outer = CryptoUtils.keccak256_int(encoded)

    return Word.from_int((outer >> 8) << 8)


def erc1967_slot(label: str) -> StorageSlot:
    """Compute an ERC-1967 proxy slot (``keccak256(label) - 1``)."""
    label = Validators.validate_string(label, "label").unwrap()
    return Word.from_int((CryptoUtils.keccak256_int(label) - 1) % _MOD)


# 0x360894a13ba1a3210667c828492db98dca3e2076cc3735a920a3ca505d382bbc
IMPLEMENTATION_SLOT = erc1967_slot("eip1967.proxy.implementation")
