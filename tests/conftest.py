"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from igor.adapters.mock import MockExecutor, MockPackageManager
from igor.core.context import UninstallContext
from igor.core.models.distro import Distribution, DistroFamily


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def executor() -> MockExecutor:
    return MockExecutor()


@pytest.fixture
def package_manager() -> MockPackageManager:
    return MockPackageManager()


@pytest.fixture
def debian() -> Distribution:
    return Distribution(id="debian", name="Debian GNU/Linux", version_id="12", family=DistroFamily.DEBIAN)


@pytest.fixture
def ctx(executor, package_manager, debian) -> UninstallContext:
    """Context wired to mocks; no kernel detector."""
    return UninstallContext(executor=executor, package_manager=package_manager, distro=debian)
