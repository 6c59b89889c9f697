"""
Token identity derivation.

A token id is the Keccak-256 hash of the ABI encoding of
``(uint256[] percents, uint256[] share_ids, address originator)``. The
encoding keeps sequence order and element width, so the same ordered
inputs always yield the same id and any reordering yields a different one.
Nothing is persisted here; existence tracking belongs to the ledger.
"""

from __future__ import annotations

from typing import Sequence

from eqledger.hardening import CryptoUtils, Validators

TokenId = int

ID_ENCODING = ["uint256[]", "uint256[]", "address"]


def derive_id(
    percents: Sequence[int],
    share_ids: Sequence[int],
    originator: str,
) -> TokenId:
    """
    Derive the token id for a share composition.

    Raises:
        InvalidArgument: an element is not a uint256 or the originator
            is not an address.
    """
    percents = Validators.validate_uint256_sequence(percents, "percents").unwrap()
    share_ids = Validators.validate_uint256_sequence(share_ids, "share_ids").unwrap()
    originator = Validators.validate_address(originator, "originator").unwrap()

    encoded = CryptoUtils.abi_encode(
        ID_ENCODING,
        [list(percents), list(share_ids), originator],
    )
    return CryptoUtils.keccak256_int(encoded)
