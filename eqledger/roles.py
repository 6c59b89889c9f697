"""
Capability roles.

Each role is a 256-bit identifier with one membership set and one admin
role. Holders of a role's admin role may grant and revoke it; the admin
role of every role defaults to ``ADMIN_ROLE`` (the zero word), which
therefore administers itself.

Storage, under ``luna.storage.AccessControl``::

    roles[role] + 0   mapping(account => bool) members
    roles[role] + 1   bytes32 admin role

Gates are explicit: ``check_role`` returns an ``AuthorizationResult`` that
mutating operations ``require()`` before touching storage.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Union

from eqledger.events import Event, RoleAdminChanged, RoleGranted, RoleRevoked
from eqledger.hardening import (
    CryptoUtils,
    InvalidArgument,
    Unauthorized,
    Validators,
)
from eqledger.observability import LedgerLayer, get_logger
from eqledger.storage import ACCESS_CONTROL_LAYOUT, StorageLayout, StorageRegion, mapping_slot
from eqledger.word import Word

if TYPE_CHECKING:
    from eqledger.host import CallContext

logger = get_logger("roles", LedgerLayer.ROLES)

RoleLike = Union[Word, str, int]
Emitter = Callable[[Event], None]


def role_id(name: str) -> Word:
    """Role identifier for a human-readable role name."""
    name = Validators.validate_string(name, "role name").unwrap()
    return Word(CryptoUtils.keccak256(name))


ADMIN_ROLE = Word.zero()
MINTER_ROLE = role_id("MINTER_ROLE")
BURNER_ROLE = role_id("BURNER_ROLE")

ROLE_NAMES: Dict[Word, str] = {
    ADMIN_ROLE: "DEFAULT_ADMIN_ROLE",
    MINTER_ROLE: "MINTER_ROLE",
    BURNER_ROLE: "BURNER_ROLE",
}


def as_role(role: RoleLike) -> Word:
    """Coerce a role given as a word, hex string or integer."""
    if isinstance(role, Word):
        return role
    if isinstance(role, bool):
        raise InvalidArgument(f"role: expected bytes32, got {role!r}")
    if isinstance(role, int):
        Validators.validate_uint256(role, "role").raise_if_invalid()
        return Word.from_int(role)
    if isinstance(role, str) and role.startswith("0x") and len(role) <= 66:
        try:
            return Word.from_hex(role)
        except ValueError:
            pass
    raise InvalidArgument(f"role: expected bytes32, got {role!r}")


def role_label(role: Word) -> str:
    return ROLE_NAMES.get(role, role.to_hex())


@dataclass(frozen=True)
class AuthorizationResult:
    """Outcome of a capability gate."""
    granted: bool
    role: Word
    account: str

    def require(self) -> None:
        """Raise Unauthorized unless the gate passed."""
        if not self.granted:
            raise Unauthorized(self.account, f"role {self.role.to_hex()}")

    def __bool__(self) -> bool:
        return self.granted


class RoleRegistry:
    """Role membership and role administration over a storage region."""

    def __init__(
        self,
        region: StorageRegion,
        emit: Emitter,
        layout: StorageLayout = ACCESS_CONTROL_LAYOUT,
    ):
        self._region = region
        self._emit = emit
        self._layout = layout

    def _role_base(self, role: Word) -> int:
        return self._layout.mapping_slot("roles", role)

    def _member_slot(self, role: Word, account: str) -> int:
        return mapping_slot(self._role_base(role), account)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def has_role(self, role: RoleLike, account: str) -> bool:
        role = as_role(role)
        account = Validators.validate_address(account, "account").unwrap()
        return self._region.load_bool(self._member_slot(role, account))

    def check_role(self, role: RoleLike, account: str) -> AuthorizationResult:
        role = as_role(role)
        account = Validators.validate_address(account, "account").unwrap()
        return AuthorizationResult(
            granted=self.has_role(role, account),
            role=role,
            account=account,
        )

    def get_role_admin(self, role: RoleLike) -> Word:
        role = as_role(role)
        return self._region.sload(self._role_base(role) + 1)

    # -------------------------------------------------------------------------
    # Gated mutations
    # -------------------------------------------------------------------------

    def grant_role(self, ctx: "CallContext", role: RoleLike, account: str) -> None:
        """Grant ``role`` to ``account``; caller must hold the role's admin role."""
        role = as_role(role)
        account = Validators.validate_address(account, "account").unwrap()
        self.check_role(self.get_role_admin(role), ctx.caller).require()
        self._grant_role(role, account, ctx.caller)

    def revoke_role(self, ctx: "CallContext", role: RoleLike, account: str) -> None:
        """Revoke ``role`` from ``account``; caller must hold the role's admin role."""
        role = as_role(role)
        account = Validators.validate_address(account, "account").unwrap()
        self.check_role(self.get_role_admin(role), ctx.caller).require()
        self._revoke_role(role, account, ctx.caller)

    def renounce_role(self, ctx: "CallContext", role: RoleLike, account: str) -> None:
        """Drop a role held by the caller itself."""
        role = as_role(role)
        account = Validators.validate_address(account, "account").unwrap()
        if account != ctx.caller:
            raise InvalidArgument("AccessControl: can only renounce roles for self")
        self._revoke_role(role, account, ctx.caller)

    def set_role_admin(self, ctx: "CallContext", role: RoleLike, admin_role: RoleLike) -> None:
        """Make ``admin_role`` the admin of ``role``; caller must hold the current admin role."""
        role = as_role(role)
        self.check_role(self.get_role_admin(role), ctx.caller).require()
        self._set_role_admin(role, admin_role)

    # -------------------------------------------------------------------------
    # Ungated internals
    # -------------------------------------------------------------------------

    def _grant_role(self, role: Word, account: str, sender: str) -> bool:
        slot = self._member_slot(role, account)
        if self._region.load_bool(slot):
            return False
        self._region.store_bool(slot, True)
        self._emit(RoleGranted(role=role.to_hex(), account=account, sender=sender))
        logger.info(
            "Role granted",
            operation="grant_role",
            role=role_label(role),
            account=account,
            sender=sender,
        )
        return True

    def _revoke_role(self, role: Word, account: str, sender: str) -> bool:
        slot = self._member_slot(role, account)
        if not self._region.load_bool(slot):
            return False
        self._region.store_bool(slot, False)
        self._emit(RoleRevoked(role=role.to_hex(), account=account, sender=sender))
        logger.info(
            "Role revoked",
            operation="revoke_role",
            role=role_label(role),
            account=account,
            sender=sender,
        )
        return True

    def _set_role_admin(self, role: RoleLike, admin_role: RoleLike) -> None:
        role = as_role(role)
        admin_role = as_role(admin_role)
        previous = self.get_role_admin(role)
        self._region.sstore(self._role_base(role) + 1, admin_role)
        self._emit(RoleAdminChanged(
            role=role.to_hex(),
            previous_admin_role=previous.to_hex(),
            new_admin_role=admin_role.to_hex(),
        ))
        logger.info(
            "Role admin changed",
            operation="set_role_admin",
            role=role_label(role),
            admin_role=role_label(admin_role),
        )
