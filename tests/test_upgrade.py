"""
Initialization, versioning and upgrade tests.
"""

import pytest

from eqledger.events import Initialized, RoleGranted, TransferSingle, Upgraded, Version
from eqledger.hardening import (
    AlreadyInitialized,
    InvalidArgument,
    InvalidImplementation,
    StorageLayoutConflict,
    Unauthorized,
    UnknownEntryPoint,
)
from eqledger.host import CallContext, Proxy
from eqledger.roles import ADMIN_ROLE, BURNER_ROLE, MINTER_ROLE, RoleRegistry
from eqledger.slots import IMPLEMENTATION_SLOT
from eqledger.storage import (
    ACCESS_CONTROL_LAYOUT,
    ERC1155_LAYOUT,
    INITIALIZABLE_LAYOUT,
    FieldKind,
    StorageLayout,
    StorageRegion,
)
from eqledger.token import EqToken
from eqledger.upgrade import UpgradeController


class ReorderedToken(EqToken):
    """Swaps two EqToken fields."""

    name = "ReorderedToken"
    storage_layouts = (
        INITIALIZABLE_LAYOUT,
        ACCESS_CONTROL_LAYOUT,
        ERC1155_LAYOUT,
        StorageLayout("luna.storage.EqToken", [
            ("total_supply", FieldKind.MAPPING),
            ("id_exists", FieldKind.MAPPING),
            ("version", FieldKind.VALUE),
        ]),
    )


class RegionlessToken(EqToken):
    """Forgets the ERC1155 region."""

    name = "RegionlessToken"
    storage_layouts = (
        INITIALIZABLE_LAYOUT,
        ACCESS_CONTROL_LAYOUT,
        EqToken.storage_layouts[3],
    )


def version_of(token):
    return token.transact(CallContext(token.address), "get_version").return_value


# =============================================================================
# INITIALIZATION
# =============================================================================

class TestInitialize:
    """One-time setup."""

    def test_initialize_events(self, registry, accounts, v1_address):
        proxy = Proxy(registry, v1_address)
        receipt = proxy.transact(
            CallContext(accounts.owner), "initialize", "ipfs://x", accounts.minter, accounts.burner, accounts.admin
        )
        kinds = [type(e) for e in receipt.events]
        assert kinds == [RoleGranted, RoleGranted, RoleGranted, Initialized]
        assert [e.role for e in receipt.events[:3]] == [
            ADMIN_ROLE.to_hex(), MINTER_ROLE.to_hex(), BURNER_ROLE.to_hex(),
        ]
        assert receipt.events[-1].version == 1

    def test_roles_assigned(self, token, accounts):
        assert token.call("has_role", ADMIN_ROLE, accounts.admin)
        assert token.call("has_role", MINTER_ROLE, accounts.minter)
        assert token.call("has_role", BURNER_ROLE, accounts.burner)
        assert not token.call("has_role", ADMIN_ROLE, accounts.owner)

    def test_second_initialize_rejected(self, token, accounts):
        with pytest.raises(AlreadyInitialized):
            token.transact(
                CallContext(accounts.stranger), "initialize", "x", accounts.stranger,
                accounts.stranger, accounts.stranger,
            )
        assert not token.call("has_role", ADMIN_ROLE, accounts.stranger)

    def test_uninitialized_proxy_has_no_minter(self, registry, accounts, v1_address):
        """Nobody holds a role before initialization."""
        bare = Proxy(registry, v1_address)
        token_id = bare.transact(
            CallContext(accounts.manager), "generate_id", [1], [1], accounts.manager
        ).return_value
        with pytest.raises(Unauthorized):
            bare.transact(CallContext(accounts.minter), "mint", accounts.user1, token_id, 1, b"")

    def test_proxy_requires_registered_logic(self, registry, accounts):
        with pytest.raises(InvalidImplementation):
            Proxy(registry, accounts.stranger)


# =============================================================================
# VERSION
# =============================================================================

class TestVersion:
    """Version counter."""

    def test_starts_at_one(self, token):
        receipt = token.transact(CallContext(token.address), "get_version")
        assert receipt.return_value == 1
        assert receipt.events[0].args == (1,)

    def test_read_via_call_emits_nothing(self, token):
        before = len(token.logs())
        assert token.call("get_version") == 1
        assert len(token.logs()) == before


# =============================================================================
# UPGRADE
# =============================================================================

class TestUpgrade:
    """UUPS-style replacement of the logic module."""

    def test_non_admin_rejected(self, token, accounts, v2_address, v1_address):
        logged = len(token.logs())
        with pytest.raises(Unauthorized):
            token.transact(CallContext(accounts.owner), "upgrade_to", v2_address)
        assert token.implementation == v1_address
        assert len(token.logs()) == logged
        assert token.call("get_version") == 1

    def test_authorization_hook_gates_upgrade(self, token, accounts, v1_address, v2_address, monkeypatch):
        monkeypatch.setattr(UpgradeController, "authorize_upgrade", lambda self, caller: False)
        with pytest.raises(Unauthorized):
            token.transact(CallContext(accounts.admin), "upgrade_to", v2_address)
        assert token.implementation == v1_address
        assert token.call("get_version") == 1

    def test_admin_upgrade(self, token, accounts, token_id, v2_address):
        token.transact(CallContext(accounts.minter), "mint", accounts.user1, token_id, 1000, b"")

        receipt = token.transact(CallContext(accounts.admin), "upgrade_to", v2_address)

        assert [type(e) for e in receipt.events] == [Version, Upgraded]
        assert receipt.events[0].value == 2
        assert receipt.events[1].implementation == v2_address
        assert token.implementation == v2_address
        assert token.region.sload(IMPLEMENTATION_SLOT.to_int()).to_address() == v2_address
        assert token.logic.name == "EqTokenV2"

        assert token.call("balance_of", accounts.user1, token_id) == 1000
        assert token.call("total_supply", token_id) == 1000
        assert token.call("exists", token_id)
        assert token.call("has_role", MINTER_ROLE, accounts.minter)
        assert token.call("get_version") == 2

    def test_upgraded_logic_keeps_working(self, token, accounts, token_id, v2_address):
        token.transact(CallContext(accounts.admin), "upgrade_to", v2_address)
        receipt = token.transact(CallContext(accounts.minter), "mint", accounts.user1, token_id, 5, b"")
        assert isinstance(receipt.events[0], TransferSingle)

    def test_name_only_after_upgrade(self, token, accounts, v2_address):
        with pytest.raises(UnknownEntryPoint):
            token.transact(CallContext(accounts.admin), "set_name", "Eq")

        token.transact(CallContext(accounts.admin), "upgrade_to", v2_address)
        assert token.call("token_name") == ""
        token.transact(CallContext(accounts.admin), "set_name", "Equity Token")
        assert token.call("token_name") == "Equity Token"

    def test_set_name_requires_admin(self, token, accounts, v2_address):
        token.transact(CallContext(accounts.admin), "upgrade_to", v2_address)
        with pytest.raises(Unauthorized):
            token.transact(CallContext(accounts.stranger), "set_name", "Mine")

    def test_unregistered_target(self, token, accounts):
        with pytest.raises(InvalidImplementation):
            token.transact(CallContext(accounts.admin), "upgrade_to", accounts.stranger)
        assert token.call("get_version") == 1

    def test_proxy_is_not_a_target(self, token, accounts, registry, v1_address):
        other = Proxy(registry, v1_address)
        with pytest.raises(InvalidImplementation) as exc_info:
            token.transact(CallContext(accounts.admin), "upgrade_to", other.address)
        assert "proxiableUUID" in exc_info.value.reason

    def test_reordered_layout_rejected(self, token, accounts, registry):
        target = registry.deploy(ReorderedToken(), accounts.owner)
        with pytest.raises(StorageLayoutConflict):
            token.transact(CallContext(accounts.admin), "upgrade_to", target)
        assert token.call("get_version") == 1

    def test_layout_check_can_be_disabled(self, token, accounts, registry, clean_config):
        clean_config.set("host.enforce_layout_checks", False)
        target = registry.deploy(ReorderedToken(), accounts.owner)
        token.transact(CallContext(accounts.admin), "upgrade_to", target)
        assert token.implementation == target

    def test_dropped_region_rejected(self, token, accounts, registry):
        target = registry.deploy(RegionlessToken(), accounts.owner)
        with pytest.raises(StorageLayoutConflict) as exc_info:
            token.transact(CallContext(accounts.admin), "upgrade_to", target)
        assert exc_info.value.namespace == "luna.storage.ERC1155"

    def test_upgrade_to_same_logic(self, token, accounts, v1_address):
        """Reinstalling the current logic is an ordinary upgrade."""
        token.transact(CallContext(accounts.admin), "upgrade_to", v1_address)
        assert token.call("get_version") == 2

    def test_two_upgrades(self, token, accounts, v1_address, v2_address):
        token.transact(CallContext(accounts.admin), "upgrade_to", v2_address)
        token.transact(CallContext(accounts.admin), "upgrade_to", v2_address)
        assert version_of(token) == 3

    def test_reinitialize_after_upgrade_rejected(self, token, accounts, v2_address):
        token.transact(CallContext(accounts.admin), "upgrade_to", v2_address)
        with pytest.raises(AlreadyInitialized):
            token.transact(
                CallContext(accounts.admin), "initialize", "x", accounts.admin, accounts.admin, accounts.admin
            )


class TestUpgradeAndCall:
    """Upgrade followed by a call into the new logic."""

    def test_follow_up_call(self, token, accounts, v2_address):
        receipt = token.transact(
            CallContext(accounts.admin), "upgrade_to_and_call", v2_address, ("set_name", "Eq")
        )
        assert token.call("token_name") == "Eq"
        assert [type(e) for e in receipt.events] == [Version, Upgraded]

    def test_failing_follow_up_reverts_upgrade(self, token, accounts, v1_address, v2_address):
        with pytest.raises(UnknownEntryPoint):
            token.transact(
                CallContext(accounts.admin), "upgrade_to_and_call", v2_address, ("no_such_method",)
            )
        assert token.implementation == v1_address
        assert token.call("get_version") == 1

    @pytest.mark.parametrize("data", ["set_name", b"\x00", ()])
    def test_malformed_data(self, token, accounts, v2_address, data):
        with pytest.raises(InvalidArgument):
            token.transact(CallContext(accounts.admin), "upgrade_to_and_call", v2_address, data)


# =============================================================================
# CONTROLLER
# =============================================================================

class TestUpgradeController:
    """Direct controller use."""

    def test_authorize_upgrade(self, accounts):
        region = StorageRegion()
        roles = RoleRegistry(region, lambda e: None)
        controller = UpgradeController(region, lambda e: None, roles)
        roles._grant_role(ADMIN_ROLE, accounts.admin, accounts.admin)
        assert controller.authorize_upgrade(accounts.admin)
        assert not controller.authorize_upgrade(accounts.stranger)

    def test_bump_version(self):
        emitted = []
        region = StorageRegion()
        controller = UpgradeController(region, emitted.append, RoleRegistry(region, emitted.append))
        controller.initialize_version()
        assert controller.bump_version() == 2
        assert controller.version() == 2
        assert emitted[-1].value == 2
