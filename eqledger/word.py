"""
256-bit storage word.

The fundamental unit of the persistent storage region: slot tags, role
identifiers and stored values are all words.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Word:
    """
    256-bit word.

    Represented internally as 32 big-endian bytes.
    """
    data: bytes

    def __post_init__(self):
        if len(self.data) != 32:
            raise ValueError(f"Word must be exactly 32 bytes, got {len(self.data)}")

    @classmethod
    def from_int(cls, value: int) -> 'Word':
        """Create word from integer (big-endian, reduced mod 2^256)."""
        value = value % (1 << 256)
        return cls(value.to_bytes(32, 'big'))

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Word':
        """Create word from at most 32 bytes (left-padded with zeros)."""
        if len(data) > 32:
            raise ValueError(f"Word cannot hold {len(data)} bytes")
        return cls(data.rjust(32, b'\x00'))

    @classmethod
    def from_hex(cls, hex_str: str) -> 'Word':
        """Create word from hex string."""
        if hex_str.startswith('0x'):
            hex_str = hex_str[2:]
        return cls(bytes.fromhex(hex_str.zfill(64)))

    @classmethod
    def from_address(cls, address: str) -> 'Word':
        """Create word holding a 20-byte address in its low bytes."""
        return cls.from_bytes(bytes.fromhex(address[2:]))

    @classmethod
    def zero(cls) -> 'Word':
        """Create zero word."""
        return cls(b'\x00' * 32)

    def to_int(self) -> int:
        """Convert to unsigned integer."""
        return int.from_bytes(self.data, 'big')

    def to_hex(self) -> str:
        """Convert to 0x-prefixed hex string."""
        return '0x' + self.data.hex()

    def to_address(self) -> str:
        """Interpret the low 20 bytes as an address."""
        return '0x' + self.data[12:].hex()

    def __bool__(self) -> bool:
        return any(self.data)

    def __str__(self) -> str:
        return self.to_hex()
