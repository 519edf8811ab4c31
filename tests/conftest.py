import os
import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import trustreg`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))


OWNER = "did:example:owner"
OTHER = "did:example:mallory"
ISSUER_A = "did:example:kyc-provider"
ISSUER_B = "did:example:aml-provider"
ISSUER_C = "did:example:accreditation-provider"


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless TRUSTREG_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_slow = _env_flag('TRUSTREG_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set TRUSTREG_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def _fresh_config(monkeypatch):
    """Every test starts from default configuration with no TRUSTREG_* overrides."""
    from trustreg.config import ConfigManager

    for name in list(os.environ):
        if name.startswith("TRUSTREG_") and name != "TRUSTREG_RUN_SLOW":
            monkeypatch.delenv(name)
    ConfigManager.reset_instance()
    yield
    ConfigManager.reset_instance()


@pytest.fixture
def registry():
    from trustreg.registry import IssuerRegistry
    return IssuerRegistry(owner=OWNER)


@pytest.fixture
def recorder(registry):
    from trustreg.events import EventRecorder
    return EventRecorder(registry.event_bus)


@pytest.fixture(autouse=True)
def _detach_log_handlers():
    """Drop handlers installed by configure_logging so they never outlive a captured stream."""
    import logging
    from trustreg.observability import ROOT_LOGGER

    yield
    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        if getattr(handler, "_trustreg_handler", False):
            root.removeHandler(handler)
