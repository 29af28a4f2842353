"""Root conftest for test suite.

Auto-skips slow tests (real backoff sleeps). Run them with: pytest -m slow
"""

import pytest


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless selected with a -m expression naming them."""
    markexpr = config.getoption("-m", default="")
    if "slow" in markexpr:
        return

    skip_slow = pytest.mark.skip(
        reason="slow tests skipped by default. Run with: pytest -m slow"
    )
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)
