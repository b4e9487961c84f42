"""
Root conftest.py - Global fixtures and configuration for all test layers.

Test Layers:
    - integration/: Service integration tests (real PostgreSQL)
    - component/  : Component tests (in-memory store, fake vendor)
    - unit/       : Unit tests (pure functions, no I/O)
"""
import os
import sys

import pytest

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

# Keep tests off real infrastructure unless a layer opts in
os.environ.setdefault("ENV", "testing")
os.environ.setdefault("NATS_ENABLED", "false")


# =============================================================================
# Test Configuration
# =============================================================================

class TestConfig:
    """Centralized test configuration"""

    __test__ = False

    SERVICES = {
        "campaign_service": 8240,
    }

    POSTGRES_DSN_ENV = "CAMPAIGN_TEST_POSTGRES_HOST"

    @classmethod
    def get_service_url(cls, service_name: str) -> str:
        port = cls.SERVICES[service_name]
        host = os.getenv("TEST_SERVICE_HOST", "localhost")
        return f"http://{host}:{port}"

    @classmethod
    def postgres_available(cls) -> bool:
        return bool(os.getenv(cls.POSTGRES_DSN_ENV))


@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    """Test configuration"""
    return TestConfig()


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "component: Component tests")
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "requires_db: needs a reachable PostgreSQL")


def pytest_collection_modifyitems(config, items):
    """Skip tests whose infrastructure is not available"""
    skip_db = pytest.mark.skip(
        reason=f"PostgreSQL not configured (set {TestConfig.POSTGRES_DSN_ENV})"
    )

    for item in items:
        if "requires_db" in item.keywords and (
            os.getenv("SKIP_DB_TESTS") or not TestConfig.postgres_available()
        ):
            item.add_marker(skip_db)
