"""
EqToken logic modules.

``EqToken`` is the deployable logic behind an EqToken proxy: a role-gated
multi-token ledger whose ids are derived from share compositions, with
UUPS-style self-upgrade. It holds no state; each entry point binds the
components to the proxy's storage for the duration of the call.

``EqTokenV2`` is its successor. It appends a ``name`` field to the
EqToken region and leaves every existing field where it was.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from eqledger.config import get_config_manager
from eqledger.events import Initialized
from eqledger.hardening import AlreadyInitialized, InvalidArgument, Validators
from eqledger.host import Frame, LogicModule, entry_point
from eqledger.identity import TokenId
from eqledger.ledger import LedgerCore
from eqledger.metadata import MetadataResource
from eqledger.observability import LedgerLayer, get_logger
from eqledger.roles import (
    ADMIN_ROLE,
    BURNER_ROLE,
    MINTER_ROLE,
    RoleLike,
    RoleRegistry,
)
from eqledger.storage import (
    ACCESS_CONTROL_LAYOUT,
    EQTOKEN_LAYOUT,
    EQTOKEN_V2_LAYOUT,
    ERC1155_LAYOUT,
    INITIALIZABLE_LAYOUT,
)
from eqledger.upgrade import UpgradeController
from eqledger.word import Word

logger = get_logger("token", LedgerLayer.LEDGER)


@dataclass
class Components:
    """Ledger components bound to one call's frame."""
    roles: RoleRegistry
    ledger: LedgerCore
    upgrades: UpgradeController
    metadata: MetadataResource


class EqToken(LogicModule):
    """Version 1 of the EqToken logic."""

    name = "EqToken"
    storage_layouts = (
        INITIALIZABLE_LAYOUT,
        ACCESS_CONTROL_LAYOUT,
        ERC1155_LAYOUT,
        EQTOKEN_LAYOUT,
    )

    def bind(self, frame: Frame) -> Components:
        roles = RoleRegistry(frame.region, frame.emit)
        return Components(
            roles=roles,
            ledger=LedgerCore(
                frame.region,
                frame.emit,
                roles,
                max_batch_size=get_config_manager().get("ledger.max_batch_size"),
            ),
            upgrades=UpgradeController(frame.region, frame.emit, roles),
            metadata=MetadataResource(frame.region),
        )

    # =========================================================================
    # Initialization
    # =========================================================================

    @entry_point
    def initialize(self, frame: Frame, uri: str, minter: str, burner: str, admin: str) -> None:
        """One-time setup: role holders, metadata template and version 1."""
        initialized_slot = INITIALIZABLE_LAYOUT.slot_of("initialized")
        if frame.region.load_int(initialized_slot) != 0:
            raise AlreadyInitialized()

        minter = Validators.validate_address(minter, "minter").unwrap()
        burner = Validators.validate_address(burner, "burner").unwrap()
        admin = Validators.validate_address(admin, "admin").unwrap()

        c = self.bind(frame)
        frame.region.store_int(initialized_slot, 1)
        c.metadata.set_uri(uri)
        c.roles._grant_role(ADMIN_ROLE, admin, frame.caller)
        c.roles._grant_role(MINTER_ROLE, minter, frame.caller)
        c.roles._grant_role(BURNER_ROLE, burner, frame.caller)
        c.upgrades.initialize_version()
        frame.emit(Initialized(version=1))

        logger.info(
            "Initialized",
            operation="initialize",
            admin=admin,
            minter=minter,
            burner=burner,
        )

    # =========================================================================
    # Ids and balances
    # =========================================================================

    @entry_point
    def generate_id(
        self,
        frame: Frame,
        percents: Sequence[int],
        share_ids: Sequence[int],
        originator: str,
    ) -> TokenId:
        return self.bind(frame).ledger.generate(percents, share_ids, originator)

    @entry_point
    def mint(self, frame: Frame, to: str, token_id: int, amount: int, data: Any = b"") -> None:
        self.bind(frame).ledger.mint(frame.context, to, token_id, amount, data)

    @entry_point
    def mint_batch(
        self,
        frame: Frame,
        to: str,
        ids: Sequence[int],
        amounts: Sequence[int],
        data: Any = b"",
    ) -> None:
        self.bind(frame).ledger.mint_batch(frame.context, to, ids, amounts, data)

    @entry_point
    def burn(self, frame: Frame, from_: str, token_id: int, amount: int) -> None:
        self.bind(frame).ledger.burn(frame.context, from_, token_id, amount)

    @entry_point
    def burn_batch(self, frame: Frame, from_: str, ids: Sequence[int], amounts: Sequence[int]) -> None:
        self.bind(frame).ledger.burn_batch(frame.context, from_, ids, amounts)

    @entry_point
    def safe_transfer_from(
        self,
        frame: Frame,
        from_: str,
        to: str,
        token_id: int,
        amount: int,
        data: Any = b"",
    ) -> None:
        self.bind(frame).ledger.safe_transfer_from(frame.context, from_, to, token_id, amount, data)

    @entry_point
    def safe_batch_transfer_from(
        self,
        frame: Frame,
        from_: str,
        to: str,
        ids: Sequence[int],
        amounts: Sequence[int],
        data: Any = b"",
    ) -> None:
        self.bind(frame).ledger.safe_batch_transfer_from(frame.context, from_, to, ids, amounts, data)

    @entry_point
    def set_approval_for_all(self, frame: Frame, operator: str, approved: bool) -> None:
        self.bind(frame).ledger.set_approval_for_all(frame.context, operator, approved)

    @entry_point
    def is_approved_for_all(self, frame: Frame, owner: str, operator: str) -> bool:
        return self.bind(frame).ledger.is_approved_for_all(owner, operator)

    @entry_point
    def balance_of(self, frame: Frame, account: str, token_id: int) -> int:
        return self.bind(frame).ledger.balance_of(account, token_id)

    @entry_point
    def balance_of_batch(self, frame: Frame, accounts: Sequence[str], ids: Sequence[int]) -> List[int]:
        return self.bind(frame).ledger.balance_of_batch(accounts, ids)

    @entry_point
    def exists(self, frame: Frame, token_id: int) -> bool:
        return self.bind(frame).ledger.exists(token_id)

    @entry_point
    def total_supply(self, frame: Frame, token_id: int) -> int:
        return self.bind(frame).ledger.total_supply(token_id)

    @entry_point
    def uri(self, frame: Frame, token_id: int = 0) -> str:
        return self.bind(frame).metadata.uri(token_id)

    # =========================================================================
    # Roles
    # =========================================================================

    @entry_point
    def minter_role(self, frame: Frame) -> Word:
        return MINTER_ROLE

    @entry_point
    def burner_role(self, frame: Frame) -> Word:
        return BURNER_ROLE

    @entry_point
    def default_admin_role(self, frame: Frame) -> Word:
        return ADMIN_ROLE

    @entry_point
    def has_role(self, frame: Frame, role: RoleLike, account: str) -> bool:
        return self.bind(frame).roles.has_role(role, account)

    @entry_point
    def get_role_admin(self, frame: Frame, role: RoleLike) -> Word:
        return self.bind(frame).roles.get_role_admin(role)

    @entry_point
    def grant_role(self, frame: Frame, role: RoleLike, account: str) -> None:
        self.bind(frame).roles.grant_role(frame.context, role, account)

    @entry_point
    def revoke_role(self, frame: Frame, role: RoleLike, account: str) -> None:
        self.bind(frame).roles.revoke_role(frame.context, role, account)

    @entry_point
    def renounce_role(self, frame: Frame, role: RoleLike, account: str) -> None:
        self.bind(frame).roles.renounce_role(frame.context, role, account)

    @entry_point
    def set_role_admin(self, frame: Frame, role: RoleLike, admin_role: RoleLike) -> None:
        self.bind(frame).roles.set_role_admin(frame.context, role, admin_role)

    # =========================================================================
    # Versioning and upgrades
    # =========================================================================

    @entry_point
    def get_version(self, frame: Frame) -> int:
        return self.bind(frame).upgrades.get_version()

    @entry_point
    def upgrade_to(self, frame: Frame, new_implementation: str) -> None:
        self.upgrade_to_and_call(frame, new_implementation, None)

    @entry_point
    def upgrade_to_and_call(
        self,
        frame: Frame,
        new_implementation: str,
        data: Optional[Sequence[Any]] = None,
    ) -> Any:
        """
        Replace the logic behind the proxy, then optionally call into it.

        ``data`` is ``(method, *args)`` dispatched to the new module in the
        same call.
        """
        if data is not None and (isinstance(data, (str, bytes)) or not data):
            raise InvalidArgument("data: expected (method, *args)")

        installed = self.bind(frame).upgrades.upgrade(
            frame.context,
            self,
            new_implementation,
            frame.registry,
            enforce_layout_checks=get_config_manager().get("host.enforce_layout_checks"),
        )
        if data is None:
            return None
        return installed.dispatch(frame, data[0], tuple(data[1:]))


class EqTokenV2(EqToken):
    """EqToken with an admin-settable display name."""

    name = "EqTokenV2"
    storage_layouts = (
        INITIALIZABLE_LAYOUT,
        ACCESS_CONTROL_LAYOUT,
        ERC1155_LAYOUT,
        EQTOKEN_V2_LAYOUT,
    )

    @entry_point
    def set_name(self, frame: Frame, value: str) -> None:
        c = self.bind(frame)
        c.roles.check_role(ADMIN_ROLE, frame.caller).require()
        value = Validators.validate_string(value, "name", min_length=0).unwrap()
        frame.region.store_string(EQTOKEN_V2_LAYOUT.slot_of("name"), value)
        logger.info("Name set", operation="set_name", name=value)

    @entry_point
    def token_name(self, frame: Frame) -> str:
        return frame.region.load_string(EQTOKEN_V2_LAYOUT.slot_of("name"))
