"""
Upgrade authorization and logic replacement.

The version counter starts at 1 when the proxy is initialized and grows by
exactly one per accepted upgrade. An upgrade passes through, in order:

    1. the ADMIN gate
    2. the target check (registered logic module, proxiable)
    3. the storage layout check (append-only extension of every region)
    4. the version bump, which emits ``Version(new)``
    5. the implementation slot write, which emits ``Upgraded(target)``

Any failure before step 4 leaves the version and the implementation
pointer untouched and emits nothing.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from eqledger.events import Event, Upgraded, Version
from eqledger.hardening import (
    InvalidImplementation,
    InvariantChecker,
    StorageLayoutConflict,
    Unauthorized,
    Validators,
)
from eqledger.observability import LedgerLayer, get_logger
from eqledger.roles import ADMIN_ROLE, RoleRegistry
from eqledger.slots import IMPLEMENTATION_SLOT
from eqledger.storage import EQTOKEN_LAYOUT, StorageLayout, StorageRegion
from eqledger.word import Word

if TYPE_CHECKING:
    from eqledger.host import CallContext, LogicModule, LogicRegistry

logger = get_logger("upgrade", LedgerLayer.UPGRADE)

Emitter = Callable[[Event], None]


def check_layout_compatibility(current: "LogicModule", candidate: "LogicModule") -> None:
    """Raise StorageLayoutConflict unless every current region survives unchanged."""
    offered = {layout.namespace: layout for layout in candidate.storage_layouts}
    for layout in current.storage_layouts:
        replacement = offered.get(layout.namespace)
        if replacement is None:
            raise StorageLayoutConflict(layout.namespace, "region dropped by new implementation")
        reason = replacement.incompatibility(layout)
        if reason is not None:
            raise StorageLayoutConflict(layout.namespace, reason)


class UpgradeController:
    """Version counter and upgrade gate."""

    def __init__(
        self,
        region: StorageRegion,
        emit: Emitter,
        roles: RoleRegistry,
        layout: StorageLayout = EQTOKEN_LAYOUT,
    ):
        self._region = region
        self._emit = emit
        self._roles = roles
        self._slot = layout.slot_of("version")

    def initialize_version(self) -> None:
        self._region.store_int(self._slot, 1)

    def version(self) -> int:
        return self._region.load_int(self._slot)

    def authorize_upgrade(self, caller: str) -> bool:
        """True iff ``caller`` holds ADMIN."""
        return self._roles.check_role(ADMIN_ROLE, caller).granted

    def bump_version(self) -> int:
        current = self.version()
        new = current + 1
        InvariantChecker.check_monotonic_increase("version", current, new)
        self._region.store_int(self._slot, new)
        self._emit(Version(value=new))
        logger.info("Version bumped", operation="bump_version", version=new)
        return new

    def get_version(self) -> int:
        """Current version; the read is observable as a ``Version`` event."""
        current = self.version()
        self._emit(Version(value=current))
        return current

    def upgrade(
        self,
        ctx: "CallContext",
        current: "LogicModule",
        new_implementation: str,
        registry: "LogicRegistry",
        enforce_layout_checks: bool = True,
    ) -> "LogicModule":
        """
        Swap the logic module behind the proxy.

        Returns:
            The module now installed.

        Raises:
            Unauthorized: caller does not hold ADMIN.
            InvalidImplementation: target is unknown or not proxiable.
            StorageLayoutConflict: target would move existing fields.
        """
        if not self.authorize_upgrade(ctx.caller):
            raise Unauthorized(ctx.caller, f"role {ADMIN_ROLE.to_hex()}")

        target = Validators.validate_address(new_implementation, "new_implementation").unwrap()
        candidate = registry.resolve(target)
        if candidate.proxiable_uuid != IMPLEMENTATION_SLOT:
            raise InvalidImplementation(target, "unsupported proxiableUUID")
        if enforce_layout_checks:
            check_layout_compatibility(current, candidate)

        new_version = self.bump_version()
        self._region.sstore(IMPLEMENTATION_SLOT.to_int(), Word.from_address(target))
        self._emit(Upgraded(implementation=target))
        logger.info(
            "Implementation upgraded",
            operation="upgrade",
            implementation=target,
            module=candidate.name,
            version=new_version,
        )
        return candidate
