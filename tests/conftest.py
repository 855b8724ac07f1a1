import os
import sys
from pathlib import Path

# Set defaults before any imports that might initialize the runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
# the test client talks plain http, so secure cookies would never be sent back
os.environ.setdefault("REFRESH_COOKIE_SECURE", "false")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from jwtauth.config import Settings  # noqa: E402
from jwtauth.service.runtime import reset_runtime_for_tests  # noqa: E402


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def settings():
    """Settings for services built directly in unit tests."""
    return Settings(
        jwt_secret="Test-Secret-Key_for-Automation-Only-987654321!",
        jwt_issuer="jwtauth-tests",
        jwt_audience="jwtauth-test-clients",
        jwt_ttl_minutes=15,
        refresh_token_ttl_days=7,
    )
