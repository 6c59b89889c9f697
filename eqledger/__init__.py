"""
EQLEDGER: Upgradeable Role-Gated Multi-Token Ledger

A persistent multi-asset ledger whose logic can be replaced behind a
stable address without losing or corrupting its accounting state.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                         UPGRADEABLE TOKEN LEDGER                         │
    │                                                                          │
    │  HOST                                                                    │
    │    host.py          Proxy, logic registry, atomic serialized calls      │
    │    token.py         EqToken / EqTokenV2 logic modules                   │
    │                                                                          │
    │  COMPONENTS                                                              │
    │    ledger.py        Balances, existence, supply, approvals              │
    │    roles.py         Capability roles and role administration            │
    │    upgrade.py       Version counter and upgrade gate                    │
    │    metadata.py      Shared metadata URI template                        │
    │                                                                          │
    │  DERIVATION AND STORAGE                                                  │
    │    slots.py         Namespace -> storage slot                           │
    │    identity.py      Share composition -> token id                       │
    │    storage.py       Storage region and per-namespace layouts            │
    │                                                                          │
    │  INFRASTRUCTURE                                                          │
    │    hardening.py     Revert taxonomy, validation, hashing, invariants    │
    │    events.py        Typed events, event bus, event store                │
    │    observability.py Structured logging                                  │
    │    config.py        YAML / environment configuration                    │
    │    cli.py           Command line                                        │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Core Concepts
─────────────

    Storage Slot: Every component keeps its fields in a region whose base
    slot is derived from a namespace string. Fields sit at fixed offsets
    from that base and are only ever appended, so a new logic version
    reads exactly what the previous one wrote.

    Token Id: The hash of the ABI-encoded share composition
    (percents, share ids, originator). An id must be registered through
    ``generate_id`` before it can hold balance.

    Roles: ADMIN administers every role, MINTER creates units and BURNER
    destroys them.

    Upgrade: Only ADMIN may swap the logic module. Each accepted upgrade
    bumps the version by one; a rejected one changes nothing.

Design Principles
─────────────────

    All-or-nothing calls: a rejected call restores storage and drops
    its events.

    Explicit context: every entry point receives the caller through a
    ``CallContext`` rather than ambient state.

    Stateless logic: modules hold no storage; the proxy owns the only
    region and lends it to the module for one call.
"""

__version__ = "0.1.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    """Lazy import EQLEDGER modules on first access."""

    if name in ("compute_slot", "erc1967_slot", "IMPLEMENTATION_SLOT", "StorageSlot"):
        from eqledger import slots
        return getattr(slots, name)

    if name in ("derive_id", "TokenId"):
        from eqledger import identity
        return getattr(identity, name)

    if name in ("StorageRegion", "StorageLayout", "FieldKind", "mapping_slot"):
        from eqledger import storage
        return getattr(storage, name)

    if name in ("RoleRegistry", "AuthorizationResult", "ADMIN_ROLE", "MINTER_ROLE",
                "BURNER_ROLE", "role_id"):
        from eqledger import roles
        return getattr(roles, name)

    if name in ("LedgerCore",):
        from eqledger import ledger
        return getattr(ledger, name)

    if name in ("UpgradeController",):
        from eqledger import upgrade
        return getattr(upgrade, name)

    if name in ("MetadataResource", "expand_uri"):
        from eqledger import metadata
        return getattr(metadata, name)

    if name in ("CallContext", "CallReceipt", "LogicModule", "LogicRegistry", "Proxy",
                "deploy_proxy", "account"):
        from eqledger import host
        return getattr(host, name)

    if name in ("EqToken", "EqTokenV2"):
        from eqledger import token
        return getattr(token, name)

    if name in ("LedgerRevert", "Unauthorized", "NonexistentToken", "InsufficientBalance",
                "AlreadyInitialized", "InvalidArgument", "InvalidImplementation",
                "StorageLayoutConflict", "UnknownEntryPoint", "InvariantViolation"):
        from eqledger import hardening
        return getattr(hardening, name)

    raise AttributeError(f"module 'eqledger' has no attribute '{name}'")
