"""
EQLEDGER In-Process Host

The execution environment the ledger runs in: a registry of deployed logic
modules and proxies that forward calls to whichever module their
implementation slot points at.

Architecture:

    ┌──────────────────────────────────────────────────────────────────┐
    │                              PROXY                               │
    │   stable address ─ StorageRegion ─ EventStore ─ EventBus         │
    │                                                                  │
    │   transact(ctx, method, *args)                                   │
    │     ├─ lock (one call at a time)                                 │
    │     ├─ snapshot region                                           │
    │     ├─ resolve sload(IMPLEMENTATION_SLOT) in LogicRegistry       │
    │     ├─ LogicModule.dispatch(frame, method, args)                 │
    │     ├─ error:   restore snapshot, drop buffered events, re-raise │
    │     └─ success: commit events to store and bus, return receipt   │
    └──────────────────────────────────────────────────────────────────┘

Logic modules never hold state. Everything they read or write goes
through the ``Frame`` they are handed for the duration of one call.

Example:
    registry = LogicRegistry()
    impl = registry.deploy(EqToken())
    proxy, _ = deploy_proxy(registry, impl, CallContext(admin),
                            uri, minter, burner, admin)
    receipt = proxy.transact(CallContext(minter), "mint", holder, token_id, 10, b"")
"""

from __future__ import annotations

import threading
import time
from abc import ABC
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

from eqledger.events import Event, EventBus, EventStore
from eqledger.hardening import (
    ZERO_ADDRESS,
    CryptoUtils,
    InvalidImplementation,
    LedgerRevert,
    UnknownEntryPoint,
    Validators,
)
from eqledger.observability import (
    LedgerLayer,
    generate_correlation_id,
    get_logger,
    reset_correlation_id,
    set_correlation_id,
)
from eqledger.slots import IMPLEMENTATION_SLOT
from eqledger.storage import StorageLayout, StorageRegion
from eqledger.word import Word

logger = get_logger("host", LedgerLayer.HOST)

E = TypeVar("E", bound=Event)
F = TypeVar("F", bound=Callable[..., Any])

DEFAULT_DEPLOYER = "0x" + "de" * 20


def account(label: str) -> str:
    """Deterministic address for a human-readable label."""
    label = Validators.validate_string(label, "label").unwrap()
    return "0x" + CryptoUtils.keccak256(label)[12:].hex()


# =============================================================================
# CALL CONTEXT
# =============================================================================

@dataclass(frozen=True)
class CallContext:
    """
    Who is calling and when.

    Passed explicitly to every entry point in place of ambient globals.
    """
    caller: str
    block_number: int = 0
    timestamp: int = 0

    def __post_init__(self):
        caller = Validators.validate_address(self.caller, "caller").unwrap()
        object.__setattr__(self, "caller", caller)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "caller": self.caller,
            "block_number": self.block_number,
            "timestamp": self.timestamp,
        }


@dataclass
class Frame:
    """Everything a logic module may touch during one call."""
    context: CallContext
    region: StorageRegion
    emit: Callable[[Event], None]
    registry: "LogicRegistry"

    @property
    def caller(self) -> str:
        return self.context.caller


@dataclass
class CallReceipt:
    """Outcome of a committed call."""
    method: str
    caller: str
    return_value: Any
    events: List[Event]
    correlation_id: str
    duration_ms: float = 0.0

    def events_of(self, event_type: Type[E]) -> List[E]:
        return [e for e in self.events if isinstance(e, event_type)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "caller": self.caller,
            "return_value": self.return_value,
            "events": [e.to_dict() for e in self.events],
            "correlation_id": self.correlation_id,
            "duration_ms": round(self.duration_ms, 3),
        }


# =============================================================================
# LOGIC MODULES
# =============================================================================

def entry_point(func: F) -> F:
    """Mark a logic module method as callable through a proxy."""
    func._entry_point = True  # type: ignore[attr-defined]
    return func


class LogicModule(ABC):
    """
    Swappable code executed against a proxy's storage.

    Subclasses declare the storage layouts they use and mark their public
    methods with ``@entry_point``; every entry point receives the call's
    ``Frame`` as first argument.
    """

    name: str = "LogicModule"
    storage_layouts: Tuple[StorageLayout, ...] = ()

    @property
    def proxiable_uuid(self) -> Word:
        """Slot this module expects its implementation pointer in."""
        return IMPLEMENTATION_SLOT

    @classmethod
    def entry_points(cls) -> List[str]:
        return sorted(
            name for name in dir(cls)
            if getattr(getattr(cls, name, None), "_entry_point", False)
        )

    def dispatch(self, frame: Frame, method: str, args: Tuple[Any, ...] = (), kwargs: Optional[Dict[str, Any]] = None) -> Any:
        handler = getattr(self, method, None) if not method.startswith("_") else None
        if handler is None or not getattr(handler, "_entry_point", False):
            raise UnknownEntryPoint(self.name, method)
        return handler(frame, *args, **(kwargs or {}))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class LogicRegistry:
    """
    Deployed logic modules by address.

    Addresses are derived from the deployer and its deployment count, so
    a given deployment sequence always produces the same addresses.
    """

    def __init__(self):
        self._modules: Dict[str, LogicModule] = {}
        self._nonces: Dict[str, int] = {}
        self._lock = threading.Lock()

    def deploy(self, module: LogicModule, deployer: str = DEFAULT_DEPLOYER) -> str:
        deployer = Validators.validate_address(deployer, "deployer").unwrap()
        with self._lock:
            nonce = self._nonces.get(deployer, 0)
            self._nonces[deployer] = nonce + 1
            encoded = CryptoUtils.abi_encode(["address", "uint256"], [deployer, nonce])
            address = "0x" + CryptoUtils.keccak256(encoded)[12:].hex()
            self._modules[address] = module

        logger.info("Logic module deployed", operation="deploy", module=module.name, address=address)
        return address

    def resolve(self, address: str) -> LogicModule:
        address = Validators.validate_address(address, "implementation").unwrap()
        with self._lock:
            module = self._modules.get(address)
        if module is None:
            raise InvalidImplementation(address, "no logic module deployed at this address")
        return module

    def __len__(self) -> int:
        with self._lock:
            return len(self._modules)


# =============================================================================
# PROXY
# =============================================================================

class Proxy:
    """
    Stable address forwarding calls to the current logic module.

    Calls are serialized and all-or-nothing. Committed events are appended
    to the proxy's stream in the event store and then published on its
    bus.
    """

    def __init__(
        self,
        registry: LogicRegistry,
        implementation: str,
        address: Optional[str] = None,
        event_bus: Optional[EventBus] = None,
    ):
        implementation = Validators.validate_address(implementation, "implementation").unwrap()
        registry.resolve(implementation)

        self.registry = registry
        self.region = StorageRegion()
        self.region.sstore(IMPLEMENTATION_SLOT.to_int(), Word.from_address(implementation))
        self.address = address or registry.deploy(_ProxyMarker(implementation))
        self.event_store = EventStore()
        self.event_bus = event_bus or EventBus()
        self._lock = threading.RLock()

    @property
    def implementation(self) -> str:
        return self.region.sload(IMPLEMENTATION_SLOT.to_int()).to_address()

    @property
    def logic(self) -> LogicModule:
        return self.registry.resolve(self.implementation)

    def transact(self, ctx: CallContext, method: str, *args: Any, **kwargs: Any) -> CallReceipt:
        """Run an entry point and commit its effects if it succeeds."""
        with self._lock:
            correlation_id = generate_correlation_id()
            token = set_correlation_id(correlation_id)
            buffered: List[Event] = []

            def emit(event: Event) -> None:
                event.correlation_id = correlation_id
                buffered.append(event)

            frame = Frame(
                context=ctx,
                region=self.region,
                emit=emit,
                registry=self.registry,
            )
            start = time.monotonic()
            try:
                with self.region.transaction():
                    result = self.logic.dispatch(frame, method, args, kwargs)
            except LedgerRevert as e:
                logger.operation(
                    method,
                    (time.monotonic() - start) * 1000,
                    success=False,
                    error_code=type(e).__name__,
                    reason=e.reason,
                    caller=ctx.caller,
                )
                raise
            except Exception:
                logger.error(
                    f"Call {method} aborted",
                    error_code="InternalError",
                    exc_info=True,
                    caller=ctx.caller,
                )
                raise
            finally:
                reset_correlation_id(token)

            duration_ms = (time.monotonic() - start) * 1000
            self.event_store.append(self.address, buffered)
            for event in buffered:
                self.event_bus.publish(event)

            logger.operation(method, duration_ms, caller=ctx.caller, events=len(buffered))
            return CallReceipt(
                method=method,
                caller=ctx.caller,
                return_value=result,
                events=buffered,
                correlation_id=correlation_id,
                duration_ms=duration_ms,
            )

    def call(self, method: str, *args: Any, caller: str = ZERO_ADDRESS, **kwargs: Any) -> Any:
        """Run an entry point without committing anything and return its result."""
        ctx = CallContext(caller)
        with self._lock:
            frame = Frame(
                context=ctx,
                region=self.region,
                emit=lambda event: None,
                registry=self.registry,
            )
            snapshot = self.region.snapshot()
            try:
                return self.logic.dispatch(frame, method, args, kwargs)
            finally:
                self.region.restore(snapshot)
                logger.debug("View call", operation=method, caller=ctx.caller)

    def logs(self, event_type: Optional[Type[Event]] = None) -> List[Event]:
        """Committed events of this proxy, oldest first."""
        return self.event_store.read_stream(self.address, event_type)


class _ProxyMarker(LogicModule):
    """Registry placeholder reserving a proxy's address."""

    name = "ERC1967Proxy"

    def __init__(self, implementation: str):
        self.implementation = implementation

    @property
    def proxiable_uuid(self) -> Word:
        # a proxy is never a valid upgrade target
        return Word.zero()


def deploy_proxy(
    registry: LogicRegistry,
    implementation: str,
    ctx: CallContext,
    *initializer_args: Any,
    initializer: str = "initialize",
    event_bus: Optional[EventBus] = None,
) -> Tuple[Proxy, CallReceipt]:
    """Create a proxy for ``implementation`` and run its initializer."""
    proxy = Proxy(registry, implementation, event_bus=event_bus)
    receipt = proxy.transact(ctx, initializer, *initializer_args)
    logger.info(
        "Proxy deployed",
        operation="deploy_proxy",
        address=proxy.address,
        implementation=implementation,
    )
    return proxy, receipt
