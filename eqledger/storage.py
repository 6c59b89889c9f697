"""
EQLEDGER Persistent Storage

A single arena of 256-bit cells shared by every logic module that runs
behind a proxy. Components never own storage themselves; they address the
arena through a ``StorageLayout``, an offset table resolved when the layout
is defined:

    ┌──────────────────────────────────────────────────────────────────┐
    │                         STORAGE REGION                           │
    │                                                                  │
    │   compute_slot("luna.storage.ERC1155")  ──►  base                │
    │      base + 0   balances            mapping(id => account => n)  │
    │      base + 1   operator_approvals  mapping(owner => op => bool) │
    │      base + 2   uri                 string                       │
    │                                                                  │
    │   compute_slot("luna.storage.EqToken")  ──►  base'               │
    │      base' + 0  id_exists           mapping(id => bool)          │
    │      ...                                                         │
    └──────────────────────────────────────────────────────────────────┘

Mapping entries live at ``keccak256(abi.encode(key, slot))`` (applied left
to right for nested mappings) and long strings at ``keccak256(slot) + i``,
so a region's dynamic data never lands on another region's fixed fields.

Fields are only ever appended to a layout. ``is_append_only_extension_of``
is the upgrade-time check for that rule.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from eqledger.hardening import CryptoUtils, InvariantChecker, InvariantViolation
from eqledger.slots import StorageSlot, compute_slot
from eqledger.word import Word

MappingKey = Union[int, str, bytes, Word]

_MOD = 1 << 256


# =============================================================================
# STORAGE REGION
# =============================================================================

class StorageRegion:
    """
    Persistent arena of 256-bit cells keyed by slot.

    Unset cells read as zero and storing zero frees the cell, so the
    arena only holds non-zero state. All access is serialized.
    """

    def __init__(self) -> None:
        self._cells: Dict[int, Word] = {}
        self._lock = threading.RLock()

    def sload(self, slot: int) -> Word:
        """Load a cell."""
        with self._lock:
            return self._cells.get(slot % _MOD, Word.zero())

    def sstore(self, slot: int, value: Word) -> None:
        """Store a cell. Zero clears it."""
        with self._lock:
            if value:
                self._cells[slot % _MOD] = value
            else:
                self._cells.pop(slot % _MOD, None)

    def load_int(self, slot: int) -> int:
        return self.sload(slot).to_int()

    def store_int(self, slot: int, value: int) -> None:
        InvariantChecker.check_uint256(f"slot {slot:#x}", value)
        self.sstore(slot, Word.from_int(value))

    def load_bool(self, slot: int) -> bool:
        return bool(self.sload(slot))

    def store_bool(self, slot: int, value: bool) -> None:
        self.store_int(slot, 1 if value else 0)

    def load_bytes(self, slot: int) -> bytes:
        """Load a dynamic byte string using the compact/long encoding."""
        with self._lock:
            head = self.sload(slot)
            marker = head.to_int()
            if marker & 1 == 0:
                length = head.data[31] // 2
                return head.data[:length]

            length = (marker - 1) // 2
            data_slot = _data_slot(slot)
            chunks = []
            for i in range((length + 31) // 32):
                chunks.append(self.sload(data_slot + i).data)
            return b"".join(chunks)[:length]

    def store_bytes(self, slot: int, value: bytes) -> None:
        """
        Store a dynamic byte string.

        Short values (< 32 bytes) sit in the head cell with ``2 * length``
        in the low byte; longer values store ``2 * length + 1`` in the head
        and their data from ``keccak256(slot)`` onward.
        """
        with self._lock:
            self._clear_bytes(slot)
            if len(value) < 32:
                head = value.ljust(31, b"\x00") + bytes([len(value) * 2])
                self.sstore(slot, Word(head))
                return

            self.store_int(slot, len(value) * 2 + 1)
            data_slot = _data_slot(slot)
            for i in range(0, len(value), 32):
                self.sstore(data_slot + i // 32, Word(value[i:i + 32].ljust(32, b"\x00")))

    def load_string(self, slot: int) -> str:
        return self.load_bytes(slot).decode("utf-8")

    def store_string(self, slot: int, value: str) -> None:
        self.store_bytes(slot, value.encode("utf-8"))

    def _clear_bytes(self, slot: int) -> None:
        marker = self.load_int(slot)
        if marker & 1:
            length = (marker - 1) // 2
            data_slot = _data_slot(slot)
            for i in range((length + 31) // 32):
                self.sstore(data_slot + i, Word.zero())
        self.sstore(slot, Word.zero())

    def snapshot(self) -> Dict[int, Word]:
        """Copy of every non-zero cell."""
        with self._lock:
            return dict(self._cells)

    def restore(self, snapshot: Dict[int, Word]) -> None:
        """Replace the arena contents with a snapshot."""
        with self._lock:
            self._cells = dict(snapshot)

    @contextmanager
    def transaction(self) -> Iterator["StorageRegion"]:
        """All-or-nothing block: any exception restores the prior contents."""
        with self._lock:
            snapshot = self.snapshot()
            try:
                yield self
            except BaseException:
                self.restore(snapshot)
                raise

    def storage_root(self) -> str:
        """Compute Merkle root of the non-zero cells."""
        with self._lock:
            if not self._cells:
                return "0" * 64

            leaves = []
            for slot in sorted(self._cells):
                leaf_data = slot.to_bytes(32, 'big') + self._cells[slot].data
                leaves.append(CryptoUtils.hash_sha256(leaf_data))

        return CryptoUtils.merkle_root(leaves)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cells)


def _data_slot(slot: int) -> int:
    return CryptoUtils.keccak256_int(slot.to_bytes(32, 'big'))


def _key_bytes(key: MappingKey) -> bytes:
    """Left-pad a mapping key to a full word, as the ABI encodes it."""
    if isinstance(key, Word):
        return key.data
    if isinstance(key, bool):
        return Word.from_int(int(key)).data
    if isinstance(key, int):
        if key < 0 or key >= _MOD:
            raise InvariantViolation(f"mapping key {key} out of uint256 range")
        return key.to_bytes(32, 'big')
    if isinstance(key, str):
        return Word.from_address(key).data
    if isinstance(key, (bytes, bytearray)):
        return Word.from_bytes(bytes(key)).data
    raise InvariantViolation(f"unsupported mapping key type {type(key).__name__}")


def mapping_slot(slot: int, *keys: MappingKey) -> int:
    """Slot of ``m[k1][k2]...`` for a mapping stored at ``slot``."""
    for key in keys:
        encoded = CryptoUtils.abi_encode(["bytes32", "uint256"], [_key_bytes(key), slot])
        slot = CryptoUtils.keccak256_int(encoded)
    return slot


# =============================================================================
# STORAGE LAYOUT
# =============================================================================

class FieldKind(Enum):
    """How a field occupies its slot."""
    VALUE = "value"
    MAPPING = "mapping"
    STRING = "string"


@dataclass(frozen=True)
class FieldSpec:
    """A named field at a fixed offset from the region base."""
    name: str
    kind: FieldKind
    offset: int


class StorageLayout:
    """
    Offset table for one namespace.

    Offsets are assigned in declaration order when the layout is built
    and never change afterwards.
    """

    def __init__(self, namespace: str, fields: Sequence[Tuple[str, FieldKind]]):
        self.namespace = namespace
        self.base: StorageSlot = compute_slot(namespace)
        self._fields: Dict[str, FieldSpec] = {}
        for offset, (name, kind) in enumerate(fields):
            if name in self._fields:
                raise InvariantViolation(f"duplicate field '{name}' in {namespace}")
            self._fields[name] = FieldSpec(name=name, kind=kind, offset=offset)

    @property
    def fields(self) -> List[FieldSpec]:
        return sorted(self._fields.values(), key=lambda f: f.offset)

    def field(self, name: str) -> FieldSpec:
        spec = self._fields.get(name)
        if spec is None:
            raise InvariantViolation(f"no field '{name}' in {self.namespace}")
        return spec

    def slot_of(self, name: str) -> int:
        """Absolute slot of a field."""
        return (self.base.to_int() + self.field(name).offset) % _MOD

    def mapping_slot(self, name: str, *keys: MappingKey) -> int:
        """Absolute slot of an entry in a mapping field."""
        spec = self.field(name)
        if spec.kind is not FieldKind.MAPPING:
            raise InvariantViolation(f"field '{name}' in {self.namespace} is not a mapping")
        return mapping_slot(self.slot_of(name), *keys)

    def extend(self, fields: Sequence[Tuple[str, FieldKind]]) -> "StorageLayout":
        """New layout with ``fields`` appended after the existing ones."""
        existing = [(f.name, f.kind) for f in self.fields]
        return StorageLayout(self.namespace, existing + list(fields))

    def incompatibility(self, previous: "StorageLayout") -> Optional[str]:
        """Why this layout cannot replace ``previous``, or None if it can."""
        if self.namespace != previous.namespace:
            return f"namespace changed from '{previous.namespace}'"

        for old in previous.fields:
            new = self._fields.get(old.name)
            if new is None:
                return f"field '{old.name}' was removed"
            if new.offset != old.offset:
                return f"field '{old.name}' moved from offset {old.offset} to {new.offset}"
            if new.kind is not old.kind:
                return f"field '{old.name}' changed from {old.kind.value} to {new.kind.value}"
        return None

    def is_append_only_extension_of(self, previous: "StorageLayout") -> bool:
        return self.incompatibility(previous) is None

    def describe(self) -> Dict[str, Any]:
        """Serializable view of the offset table."""
        return {
            "namespace": self.namespace,
            "base_slot": self.base.to_hex(),
            "fields": [
                {
                    "name": f.name,
                    "kind": f.kind.value,
                    "offset": f.offset,
                    "slot": Word.from_int(self.slot_of(f.name)).to_hex(),
                }
                for f in self.fields
            ],
        }

    def __repr__(self) -> str:
        return f"StorageLayout({self.namespace!r}, {[f.name for f in self.fields]})"


# =============================================================================
# NAMESPACES
# =============================================================================

INITIALIZABLE_LAYOUT = StorageLayout("luna.storage.Initializable", [
    ("initialized", FieldKind.VALUE),
])

ACCESS_CONTROL_LAYOUT = StorageLayout("luna.storage.AccessControl", [
    # role => (members mapping at +0, admin role at +1)
    ("roles", FieldKind.MAPPING),
])

ERC1155_LAYOUT = StorageLayout("luna.storage.ERC1155", [
    ("balances", FieldKind.MAPPING),
    ("operator_approvals", FieldKind.MAPPING),
    ("uri", FieldKind.STRING),
])

EQTOKEN_LAYOUT = StorageLayout("luna.storage.EqToken", [
    ("id_exists", FieldKind.MAPPING),
    ("total_supply", FieldKind.MAPPING),
    ("version", FieldKind.VALUE),
])

EQTOKEN_V2_LAYOUT = EQTOKEN_LAYOUT.extend([
    ("name", FieldKind.STRING),
])
