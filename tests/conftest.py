import os
import pathlib
import sys
from types import SimpleNamespace

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import eqledger`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from eqledger.config import get_config_manager  # noqa: E402
from eqledger.host import CallContext, LogicRegistry, account, deploy_proxy  # noqa: E402
from eqledger.token import EqToken, EqTokenV2  # noqa: E402

URI = "https://api.example.com/metadata/{id}.json"


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: long randomized sequences (skipped unless EQLEDGER_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    run_slow = _env_flag('EQLEDGER_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set EQLEDGER_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def clean_config():
    """Every test starts from default configuration."""
    mgr = get_config_manager()
    mgr.reset()
    yield mgr
    mgr.reset()


@pytest.fixture
def accounts():
    """Named signer addresses."""
    return SimpleNamespace(
        owner=account("owner"),
        minter=account("minter"),
        burner=account("burner"),
        admin=account("admin"),
        user1=account("user1"),
        user2=account("user2"),
        manager=account("manager"),
        stranger=account("stranger"),
    )


@pytest.fixture
def registry():
    return LogicRegistry()


@pytest.fixture
def v1_address(registry, accounts):
    return registry.deploy(EqToken(), accounts.owner)


@pytest.fixture
def v2_address(registry, accounts, v1_address):
    return registry.deploy(EqTokenV2(), accounts.owner)


@pytest.fixture
def token(registry, accounts, v1_address):
    """An initialized EqToken proxy, as deployed by the owner."""
    proxy, _ = deploy_proxy(
        registry,
        v1_address,
        CallContext(accounts.owner),
        URI,
        accounts.minter,
        accounts.burner,
        accounts.admin,
    )
    return proxy


@pytest.fixture
def token_id(token, accounts):
    """An id generated from the sample share composition."""
    receipt = token.transact(CallContext(accounts.manager), "generate_id", [10, 20], [1, 2], accounts.manager)
    return receipt.return_value


