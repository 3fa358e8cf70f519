import pytest
from fastapi.testclient import TestClient

from powshield.config import Settings
from powshield.main import app
from powshield.middleware.rate_limit import limiter
from powshield.services.ttl_store import MemoryTTLStore
from powshield.state import build_shield


@pytest.fixture
def test_settings():
    """Settings with reference protocol constants, isolated from any .env file."""
    return Settings(
        _env_file=None,
        signing_secret=None,
        challenge_ttl_seconds=60,
        nonce_ttl_seconds=120,
        token_ttl_seconds=60,
        pow_base_difficulty=3,
        pow_difficulty_cap=3,
        shadow_throttle_threshold=0.7,
        deny_threshold=5.0,
        store_backend="memory",
    )


@pytest.fixture
def shield(test_settings):
    """Fresh protocol state for each test."""
    return build_shield(test_settings, store=MemoryTTLStore())


@pytest.fixture
def client(shield):
    """Create a test client wired to the test shield, with rate limiting disabled."""
    limiter.enabled = False

    with TestClient(app) as test_client:
        original_shield = app.state.shield
        app.state.shield = shield
        yield test_client
        app.state.shield = original_shield

    limiter.enabled = True
