"""
Multi-token balance ledger.

Balances are keyed by (id, account) and only move through mint, burn and
transfer. An id has to be registered through ``generate`` before it can
hold balance, and every mutation is staged and validated in full before
anything is written, so a rejected call never leaves a partial effect.

Storage::

    luna.storage.ERC1155
        balances[id][account]             uint256
        operator_approvals[owner][op]     bool
    luna.storage.EqToken
        id_exists[id]                     bool
        total_supply[id]                  uint256
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Tuple

from eqledger.events import ApprovalForAll, Event, TransferBatch, TransferSingle
from eqledger.hardening import (
    UINT256_MAX,
    ZERO_ADDRESS,
    InsufficientBalance,
    InvalidArgument,
    InvariantChecker,
    NonexistentToken,
    Unauthorized,
    Validators,
)
from eqledger.identity import TokenId, derive_id
from eqledger.observability import LedgerLayer, get_logger
from eqledger.roles import BURNER_ROLE, MINTER_ROLE, RoleRegistry
from eqledger.storage import ERC1155_LAYOUT, EQTOKEN_LAYOUT, StorageLayout, StorageRegion

if TYPE_CHECKING:
    from eqledger.host import CallContext

logger = get_logger("ledger", LedgerLayer.LEDGER)

Emitter = Callable[[Event], None]

# (from, to, id, amount); None marks the mint source or the burn sink
Move = Tuple[Optional[str], Optional[str], int, int]


class LedgerCore:
    """
    Balances, existence records, total supply and operator approvals.

    Example:
        ledger = LedgerCore(region, emit, roles)
        token_id = ledger.generate([10, 20], [1, 2], originator)
        ledger.mint(ctx, holder, token_id, 1000)
    """

    def __init__(
        self,
        region: StorageRegion,
        emit: Emitter,
        roles: RoleRegistry,
        max_batch_size: int = 256,
        token_layout: StorageLayout = ERC1155_LAYOUT,
        registry_layout: StorageLayout = EQTOKEN_LAYOUT,
    ):
        self._region = region
        self._emit = emit
        self._roles = roles
        self._max_batch_size = max_batch_size
        self._token_layout = token_layout
        self._registry_layout = registry_layout

    # =========================================================================
    # Slots
    # =========================================================================

    def _balance_slot(self, token_id: int, account: str) -> int:
        return self._token_layout.mapping_slot("balances", token_id, account)

    def _approval_slot(self, owner: str, operator: str) -> int:
        return self._token_layout.mapping_slot("operator_approvals", owner, operator)

    def _exists_slot(self, token_id: int) -> int:
        return self._registry_layout.mapping_slot("id_exists", token_id)

    def _supply_slot(self, token_id: int) -> int:
        return self._registry_layout.mapping_slot("total_supply", token_id)

    # =========================================================================
    # Input normalization
    # =========================================================================

    def _ids(self, ids: Any) -> Tuple[int, ...]:
        return Validators.validate_uint256_sequence(
            ids, "ids", max_length=self._max_batch_size
        ).unwrap()

    def _amounts(self, amounts: Any, ids: Sequence[int]) -> Tuple[int, ...]:
        amounts = Validators.validate_uint256_sequence(
            amounts, "amounts", max_length=self._max_batch_size
        ).unwrap()
        Validators.validate_matching_lengths(ids, amounts, "ids/amounts").raise_if_invalid()
        return amounts

    def _require_exists(self, token_id: int) -> None:
        if not self.exists(token_id):
            raise NonexistentToken(token_id)

    def _require_owner_or_approved(self, ctx: "CallContext", owner: str) -> None:
        if ctx.caller != owner and not self.is_approved_for_all(owner, ctx.caller):
            raise Unauthorized(ctx.caller, f"operator approval from {owner}")

    # =========================================================================
    # Identity
    # =========================================================================

    def generate(
        self,
        percents: Sequence[int],
        share_ids: Sequence[int],
        originator: str,
    ) -> TokenId:
        """Derive an id and record its existence. Repeat calls change nothing."""
        token_id = derive_id(percents, share_ids, originator)
        slot = self._exists_slot(token_id)
        if not self._region.load_bool(slot):
            self._region.store_bool(slot, True)
            logger.info("Token id registered", operation="generate", token_id=hex(token_id))
        return token_id

    # =========================================================================
    # Mint / burn / transfer
    # =========================================================================

    def mint(
        self,
        ctx: "CallContext",
        to: str,
        token_id: int,
        amount: int,
        data: Any = b"",
    ) -> None:
        """Create ``amount`` units of a registered id for ``to``. Requires MINTER."""
        self._roles.check_role(MINTER_ROLE, ctx.caller).require()
        amount = Validators.validate_amount(amount, allow_zero=False).unwrap()
        token_id = Validators.validate_uint256(token_id, "id").unwrap()
        self._require_exists(token_id)
        to = Validators.validate_recipient(to).unwrap()

        self._apply([(None, to, token_id, amount)])
        self._emit(TransferSingle(
            operator=ctx.caller, from_=ZERO_ADDRESS, to=to, id=token_id, value=amount,
        ))
        logger.info("Minted", operation="mint", to=to, token_id=hex(token_id), amount=amount)

    def mint_batch(
        self,
        ctx: "CallContext",
        to: str,
        ids: Sequence[int],
        amounts: Sequence[int],
        data: Any = b"",
    ) -> None:
        self._roles.check_role(MINTER_ROLE, ctx.caller).require()
        ids = self._ids(ids)
        amounts = self._amounts(amounts, ids)
        for index, amount in enumerate(amounts):
            Validators.validate_amount(amount, f"amounts[{index}]", allow_zero=False).raise_if_invalid()
        for token_id in ids:
            self._require_exists(token_id)
        to = Validators.validate_recipient(to).unwrap()

        self._apply([(None, to, i, a) for i, a in zip(ids, amounts)])
        self._emit(TransferBatch(
            operator=ctx.caller, from_=ZERO_ADDRESS, to=to, ids=ids, values=amounts,
        ))
        logger.info("Batch minted", operation="mint_batch", to=to, count=len(ids))

    def burn(
        self,
        ctx: "CallContext",
        from_: str,
        token_id: int,
        amount: int,
    ) -> None:
        """Destroy ``amount`` units held by ``from_``. Requires BURNER."""
        self._roles.check_role(BURNER_ROLE, ctx.caller).require()
        from_ = Validators.validate_address(from_, "from").unwrap()
        token_id = Validators.validate_uint256(token_id, "id").unwrap()
        amount = Validators.validate_amount(amount).unwrap()

        self._apply([(from_, None, token_id, amount)])
        self._emit(TransferSingle(
            operator=ctx.caller, from_=from_, to=ZERO_ADDRESS, id=token_id, value=amount,
        ))
        logger.info("Burned", operation="burn", holder=from_, token_id=hex(token_id), amount=amount)

    def burn_batch(
        self,
        ctx: "CallContext",
        from_: str,
        ids: Sequence[int],
        amounts: Sequence[int],
    ) -> None:
        self._roles.check_role(BURNER_ROLE, ctx.caller).require()
        from_ = Validators.validate_address(from_, "from").unwrap()
        ids = self._ids(ids)
        amounts = self._amounts(amounts, ids)

        self._apply([(from_, None, i, a) for i, a in zip(ids, amounts)])
        self._emit(TransferBatch(
            operator=ctx.caller, from_=from_, to=ZERO_ADDRESS, ids=ids, values=amounts,
        ))
        logger.info("Batch burned", operation="burn_batch", holder=from_, count=len(ids))

    def safe_transfer_from(
        self,
        ctx: "CallContext",
        from_: str,
        to: str,
        token_id: int,
        amount: int,
        data: Any = b"",
    ) -> None:
        """Move units between accounts. Caller is the owner or an approved operator."""
        from_ = Validators.validate_address(from_, "from").unwrap()
        self._require_owner_or_approved(ctx, from_)
        to = Validators.validate_recipient(to).unwrap()
        token_id = Validators.validate_uint256(token_id, "id").unwrap()
        amount = Validators.validate_amount(amount).unwrap()

        self._apply([(from_, to, token_id, amount)])
        self._emit(TransferSingle(
            operator=ctx.caller, from_=from_, to=to, id=token_id, value=amount,
        ))
        logger.info(
            "Transferred",
            operation="safe_transfer_from",
            holder=from_,
            to=to,
            token_id=hex(token_id),
            amount=amount,
        )

    def safe_batch_transfer_from(
        self,
        ctx: "CallContext",
        from_: str,
        to: str,
        ids: Sequence[int],
        amounts: Sequence[int],
        data: Any = b"",
    ) -> None:
        from_ = Validators.validate_address(from_, "from").unwrap()
        self._require_owner_or_approved(ctx, from_)
        to = Validators.validate_recipient(to).unwrap()
        ids = self._ids(ids)
        amounts = self._amounts(amounts, ids)

        self._apply([(from_, to, i, a) for i, a in zip(ids, amounts)])
        self._emit(TransferBatch(
            operator=ctx.caller, from_=from_, to=to, ids=ids, values=amounts,
        ))
        logger.info(
            "Batch transferred",
            operation="safe_batch_transfer_from",
            holder=from_,
            to=to,
            count=len(ids),
        )

    def _apply(self, moves: List[Move]) -> None:
        """
        Stage every balance and supply change, validate, then write.

        Raises InsufficientBalance on a short debit and InvalidArgument on
        uint256 overflow; nothing is written in either case.
        """
        balances: Dict[Tuple[int, str], int] = {}
        supplies: Dict[int, int] = {}

        def balance(token_id: int, account: str) -> int:
            key = (token_id, account)
            if key not in balances:
                balances[key] = self._region.load_int(self._balance_slot(token_id, account))
            return balances[key]

        def supply(token_id: int) -> int:
            if token_id not in supplies:
                supplies[token_id] = self._region.load_int(self._supply_slot(token_id))
            return supplies[token_id]

        for from_, to, token_id, amount in moves:
            if from_ is None:
                minted = supply(token_id) + amount
                if minted > UINT256_MAX:
                    raise InvalidArgument(f"total supply of id {token_id} overflows uint256")
                supplies[token_id] = minted
            else:
                available = balance(token_id, from_)
                if available < amount:
                    raise InsufficientBalance(from_, token_id, available, amount)
                balances[(token_id, from_)] = available - amount

            if to is None:
                supplies[token_id] = supply(token_id) - amount
            else:
                credited = balance(token_id, to) + amount
                if credited > UINT256_MAX:
                    raise InvalidArgument(f"balance of {to} on id {token_id} overflows uint256")
                balances[(token_id, to)] = credited

        for (token_id, account), value in balances.items():
            InvariantChecker.check_non_negative("balance", value)
            InvariantChecker.check_existence_gate(token_id, value, self.exists(token_id))
            self._region.store_int(self._balance_slot(token_id, account), value)
        for token_id, value in supplies.items():
            InvariantChecker.check_non_negative("total supply", value)
            self._region.store_int(self._supply_slot(token_id), value)

    # =========================================================================
    # Approvals
    # =========================================================================

    def set_approval_for_all(self, ctx: "CallContext", operator: str, approved: bool) -> None:
        """Let ``operator`` move every id held by the caller."""
        operator = Validators.validate_address(operator, "operator").unwrap()
        if not isinstance(approved, bool):
            raise InvalidArgument(f"approved: expected bool, got {type(approved).__name__}")
        if operator == ctx.caller:
            raise InvalidArgument("ERC1155: setting approval status for self")

        self._region.store_bool(self._approval_slot(ctx.caller, operator), approved)
        self._emit(ApprovalForAll(account=ctx.caller, operator=operator, approved=approved))
        logger.info(
            "Operator approval set",
            operation="set_approval_for_all",
            owner=ctx.caller,
            operator=operator,
            approved=approved,
        )

    def is_approved_for_all(self, owner: str, operator: str) -> bool:
        owner = Validators.validate_address(owner, "owner").unwrap()
        operator = Validators.validate_address(operator, "operator").unwrap()
        return self._region.load_bool(self._approval_slot(owner, operator))

    # =========================================================================
    # Reads
    # =========================================================================

    def balance_of(self, account: str, token_id: int) -> int:
        """Balance of ``account`` for ``token_id``; zero for unknown pairs."""
        account = Validators.validate_address(account, "account").unwrap()
        token_id = Validators.validate_uint256(token_id, "id").unwrap()
        return self._region.load_int(self._balance_slot(token_id, account))

    def balance_of_batch(self, accounts: Sequence[str], ids: Sequence[int]) -> List[int]:
        if isinstance(accounts, (str, bytes)) or not isinstance(accounts, Sequence):
            raise InvalidArgument("accounts: expected a sequence of addresses")
        ids = Validators.validate_uint256_sequence(ids, "ids").unwrap()
        Validators.validate_matching_lengths(accounts, ids, "accounts/ids").raise_if_invalid()
        return [self.balance_of(account, token_id) for account, token_id in zip(accounts, ids)]

    def exists(self, token_id: int) -> bool:
        token_id = Validators.validate_uint256(token_id, "id").unwrap()
        return self._region.load_bool(self._exists_slot(token_id))

    def total_supply(self, token_id: int) -> int:
        token_id = Validators.validate_uint256(token_id, "id").unwrap()
        return self._region.load_int(self._supply_slot(token_id))
