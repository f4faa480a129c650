import os
import pathlib
import sys
from decimal import Decimal

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import ccbridge`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from ccbridge.config import ConfigManager  # noqa: E402
from ccbridge.ledger import Account  # noqa: E402
from ccbridge.network import deploy_bridge  # noqa: E402

FUJI = "avalanche-fuji"
ARBITRUM = "arbitrum-sepolia"


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "perf: performance/benchmark tests (skipped unless CCBRIDGE_RUN_PERF=1)",
    )
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless CCBRIDGE_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_perf = _env_flag('CCBRIDGE_RUN_PERF')
    run_slow = _env_flag('CCBRIDGE_RUN_SLOW')

    for item in items:
        if 'perf' in item.keywords and not run_perf:
            item.add_marker(pytest.mark.skip(reason='perf tests skipped; set CCBRIDGE_RUN_PERF=1 to enable'))
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set CCBRIDGE_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def fresh_config():
    """Every test starts from default configuration."""
    ConfigManager().reset()
    yield ConfigManager()
    ConfigManager().reset()


@pytest.fixture
def admin() -> Account:
    return Account.generate()


@pytest.fixture
def holder() -> Account:
    return Account.generate()


@pytest.fixture
def stranger() -> Account:
    return Account.generate()


@pytest.fixture
def network(admin):
    """Two bridged ledgers, each endpoint prefunded with 10 fee tokens."""
    return deploy_bridge([FUJI, ARBITRUM], admin=admin, prepaid=Decimal("10"))


@pytest.fixture
def fuji(network):
    return network[FUJI]


@pytest.fixture
def arbitrum(network):
    return network[ARBITRUM]


@pytest.fixture
def issued(network, fuji, admin, holder):
    """Asset 1 with metadata "uri-A" held by ``holder`` on fuji, endpoint approved to burn it."""
    fuji.endpoint.issue(holder.address, 1, "uri-A", caller=admin.address)
    fuji.registry.approve(fuji.endpoint.address, 1, caller=holder.address)
    return 1
