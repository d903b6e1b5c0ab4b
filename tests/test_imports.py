"""Every public package must import on its own, in a fresh interpreter."""

import subprocess
import sys

import pytest

PACKAGES = [
    "pocket.audit",
    "pocket.agents",
    "pocket.finance",
    "pocket.finance.categories",
    "pocket.queries",
    "pocket.services",
    "pocket.services.storage",
    "pocket.services.openfinance",
    "pocket.validation",
    "pocket.orchestrator",
]


@pytest.mark.parametrize("module", PACKAGES)
def test_imports_cleanly(module):
    result = subprocess.run(
        [sys.executable, "-c", f"import {module}"],
        capture_output=True,
        text=True,
    )
    assert result.returncode == 0, result.stderr
