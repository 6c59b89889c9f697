"""
EQLEDGER Validation and Hardening Module

Error taxonomy, input validation, hashing primitives and invariant checks
shared by every ledger component:

1. Revert taxonomy surfaced to callers of entry points
2. Input validation with sanitization (addresses, uint256 values, sequences)
3. Keccak-256 and contract ABI encoding primitives
4. State invariant enforcement

Security Model:
    - All inputs are untrusted until validated
    - All preconditions are checked before any state mutation
    - A rejected call carries a descriptive reason and leaves no effects
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Union

from Crypto.Hash import keccak
from eth_abi import encode as _abi_encode


UINT256_MAX = (1 << 256) - 1
ZERO_ADDRESS = "0x" + "0" * 40


# =============================================================================
# REVERT TYPES
# =============================================================================

class LedgerRevert(Exception):
    """Base exception for a rejected entry-point call."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class Unauthorized(LedgerRevert):
    """Caller lacks the capability required for the operation."""

    def __init__(self, account: str, requirement: str):
        self.account = account
        self.requirement = requirement
        super().__init__(f"AccessControl: account {account} is missing {requirement}")


class NonexistentToken(LedgerRevert):
    """Operation references an id with no existence record."""

    def __init__(self, token_id: int):
        self.token_id = token_id
        super().__init__("this token is not existent")


class InsufficientBalance(LedgerRevert):
    """Burn or transfer exceeds the held amount."""

    def __init__(self, account: str, token_id: int, available: int, required: int):
        self.account = account
        self.token_id = token_id
        self.available = available
        self.required = required
        super().__init__(
            f"ERC1155: insufficient balance for {account} on id {token_id}: "
            f"have {available}, need {required}"
        )


class AlreadyInitialized(LedgerRevert):
    """One-time setup was entered a second time."""

    def __init__(self) -> None:
        super().__init__("Initializable: contract is already initialized")


class InvalidArgument(LedgerRevert):
    """Malformed input (zero amount, bad sequence, bad address...)."""

    def __init__(self, message: str, errors: Optional[List["ValidationError"]] = None):
        self.errors = errors or []
        super().__init__(message)


class InvalidImplementation(LedgerRevert):
    """Upgrade target is not a registered, proxiable logic module."""

    def __init__(self, implementation: str, detail: str):
        self.implementation = implementation
        super().__init__(f"ERC1967: invalid implementation {implementation}: {detail}")


class StorageLayoutConflict(LedgerRevert):
    """Upgrade target would move or retype existing persistent fields."""

    def __init__(self, namespace: str, detail: str):
        self.namespace = namespace
        super().__init__(f"storage layout of '{namespace}' is not upgrade safe: {detail}")


class UnknownEntryPoint(LedgerRevert):
    """Logic module does not expose the requested method."""

    def __init__(self, module: str, method: str):
        self.method = method
        super().__init__(f"{module}: function '{method}' not found")


class InvariantViolation(Exception):
    """Internal state invariant violated. Indicates a bug, never a revert."""
    pass


# =============================================================================
# VALIDATION RESULT
# =============================================================================

class ValidationError(Exception):
    """A single field-level validation failure."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    sanitized_value: Any = None

    def raise_if_invalid(self) -> None:
        """Raise InvalidArgument if validation failed."""
        if not self.is_valid:
            messages = "; ".join(f"{e.field}: {e.message}" for e in self.errors)
            raise InvalidArgument(f"Validation failed: {messages}", self.errors)

    def unwrap(self) -> Any:
        """Return the sanitized value, raising InvalidArgument on failure."""
        self.raise_if_invalid()
        return self.sanitized_value

    @classmethod
    def success(cls, sanitized_value: Any = None) -> 'ValidationResult':
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, errors: List[ValidationError]) -> 'ValidationResult':
        return cls(is_valid=False, errors=errors)


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Collection of input validators."""

    HEX40_PATTERN = re.compile(r'^0x[a-f0-9]{40}$')

    MAX_STRING_LENGTH = 4096
    MAX_SEQUENCE_LENGTH = 1024

    @classmethod
    def validate_string(
        cls,
        value: Any,
        field_name: str,
        min_length: int = 1,
        max_length: Optional[int] = None,
    ) -> ValidationResult:
        """Validate a string value. Content is kept verbatim."""
        if max_length is None:
            max_length = cls.MAX_STRING_LENGTH
        errors = []

        if not isinstance(value, str):
            errors.append(ValidationError(field_name, f"Expected string, got {type(value).__name__}", value))
            return ValidationResult.failure(errors)

        if len(value) < min_length:
            errors.append(ValidationError(field_name, f"Too short (min {min_length} chars)", value))

        if len(value) > max_length:
            errors.append(ValidationError(field_name, f"Too long (max {max_length} chars)", value))

        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(value)

    @classmethod
    def validate_address(cls, value: Any, field_name: str = "address") -> ValidationResult:
        """Validate an account address and normalize it to lower case."""
        if isinstance(value, (bytes, bytearray)) and len(value) == 20:
            return ValidationResult.success("0x" + bytes(value).hex())

        result = cls.validate_string(value, field_name, min_length=42, max_length=42)
        if not result.is_valid:
            return result

        lower = result.sanitized_value.lower()
        if not cls.HEX40_PATTERN.match(lower):
            return ValidationResult.failure([
                ValidationError(field_name, "Must be valid address (0x + 40 hex)", value)
            ])

        return ValidationResult.success(lower)

    @classmethod
    def validate_recipient(cls, value: Any, field_name: str = "to") -> ValidationResult:
        """Validate an address that may not be the zero account."""
        result = cls.validate_address(value, field_name)
        if result.is_valid and result.sanitized_value == ZERO_ADDRESS:
            return ValidationResult.failure([
                ValidationError(field_name, "Zero address is not a valid recipient", value)
            ])
        return result

    @classmethod
    def validate_uint256(cls, value: Any, field_name: str = "value") -> ValidationResult:
        """Validate an integer in [0, 2^256)."""
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected integer, got {type(value).__name__}", value)
            ])
        if value < 0 or value > UINT256_MAX:
            return ValidationResult.failure([
                ValidationError(field_name, "Out of uint256 range", value)
            ])
        return ValidationResult.success(value)

    @classmethod
    def validate_amount(cls, value: Any, field_name: str = "amount", allow_zero: bool = True) -> ValidationResult:
        """Validate a token amount."""
        result = cls.validate_uint256(value, field_name)
        if result.is_valid and not allow_zero and value == 0:
            return ValidationResult.failure([
                ValidationError(field_name, "Amount must be greater than zero", value)
            ])
        return result

    @classmethod
    def validate_uint256_sequence(
        cls,
        value: Any,
        field_name: str,
        max_length: Optional[int] = None,
    ) -> ValidationResult:
        """Validate an ordered sequence of uint256 values."""
        if max_length is None:
            max_length = cls.MAX_SEQUENCE_LENGTH

        if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected sequence, got {type(value).__name__}", value)
            ])

        if len(value) > max_length:
            return ValidationResult.failure([
                ValidationError(field_name, f"Too long (max {max_length} elements)", len(value))
            ])

        errors = []
        for index, item in enumerate(value):
            item_result = cls.validate_uint256(item, f"{field_name}[{index}]")
            errors.extend(item_result.errors)

        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(tuple(value))

    @classmethod
    def validate_matching_lengths(
        cls,
        left: Sequence[Any],
        right: Sequence[Any],
        field_name: str,
    ) -> ValidationResult:
        """Validate that two parallel sequences have the same length."""
        if len(left) != len(right):
            return ValidationResult.failure([
                ValidationError(field_name, f"Length mismatch ({len(left)} != {len(right)})")
            ])
        return ValidationResult.success()


# =============================================================================
# CRYPTOGRAPHIC UTILITIES
# =============================================================================

class CryptoUtils:
    """Hashing and structured-encoding primitives."""

    @staticmethod
    def keccak256(data: Union[str, bytes]) -> bytes:
        """Keccak-256 digest (the pre-standard SHA-3 padding)."""
        if isinstance(data, str):
            data = data.encode('utf-8')
        return keccak.new(digest_bits=256, data=data).digest()

    @staticmethod
    def keccak256_int(data: Union[str, bytes]) -> int:
        """Keccak-256 digest as a big-endian integer."""
        return int.from_bytes(CryptoUtils.keccak256(data), 'big')

    @staticmethod
    def abi_encode(types: Sequence[str], values: Sequence[Any]) -> bytes:
        """Contract ABI encoding of a value tuple."""
        return _abi_encode(list(types), list(values))

    @staticmethod
    def hash_sha256(data: Union[str, bytes]) -> str:
        """Compute SHA256 hash."""
        if isinstance(data, str):
            data = data.encode('utf-8')
        return hashlib.sha256(data).hexdigest()

    @staticmethod
    def merkle_root(leaves: List[str]) -> str:
        """
        Compute Merkle root with proper handling of odd leaf counts.

        Uses the convention of duplicating the last leaf when odd.
        """
        if not leaves:
            return "0" * 64

        current_level = list(leaves)
        if len(current_level) == 1:
            return current_level[0]

        while len(current_level) > 1:
            if len(current_level) % 2 == 1:
                current_level.append(current_level[-1])

            next_level = []
            for i in range(0, len(current_level), 2):
                combined = current_level[i] + current_level[i + 1]
                next_level.append(hashlib.sha256(combined.encode()).hexdigest())

            current_level = next_level

        return current_level[0]


# =============================================================================
# STATE INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces state invariants after mutation."""

    @staticmethod
    def check_monotonic_increase(field_name: str, old_value: int, new_value: int) -> None:
        """Ensure value only increases."""
        if new_value < old_value:
            raise InvariantViolation(
                f"{field_name} must be monotonically increasing: "
                f"cannot go from {old_value} to {new_value}"
            )

    @staticmethod
    def check_non_negative(field_name: str, value: int) -> None:
        """Ensure value is non-negative."""
        if value < 0:
            raise InvariantViolation(f"{field_name} cannot be negative: {value}")

    @staticmethod
    def check_uint256(field_name: str, value: int) -> None:
        """Ensure a stored value fits in a storage word."""
        if value < 0 or value > UINT256_MAX:
            raise InvariantViolation(f"{field_name} overflows uint256: {value}")

    @staticmethod
    def check_existence_gate(token_id: int, balance: int, exists: bool) -> None:
        """A positive balance is only valid for a registered id."""
        if balance > 0 and not exists:
            raise InvariantViolation(
                f"id {token_id} holds balance {balance} without an existence record"
            )
