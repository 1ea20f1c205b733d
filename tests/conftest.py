import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture(autouse=True)
def _clean_stores(monkeypatch):
    """Every test starts with no users, captchas, rate-limit counters or open breaker."""
    from src.reportwizard.infrastructure import user_store
    from src.reportwizard.security import captcha, rate_limit
    from src.reportwizard.services import llm_client

    monkeypatch.setenv("RW_USER_STORE_IMPL", "memory")
    user_store.reset_user_store()
    captcha.CAPTCHA_STORE.clear()
    rate_limit.reset_rate_limits()
    monkeypatch.setattr(llm_client, "_BREAKER_STATE", {"fails": 0, "opened_at": 0.0})
    yield
    user_store.reset_user_store()


@pytest.fixture
def fake_gateway():
    from .utils import FakeGateway

    return FakeGateway()


@pytest.fixture
def api_client(fake_gateway):
    """TestClient whose LLM gateway and CRM client are replaced with fakes."""
    from fastapi.testclient import TestClient

    from src.reportwizard.api import deps
    from src.reportwizard.api.main import app
    from .utils import FakeHubSpotClient

    fake_gateway.keys = []

    def _gateway_factory(api_key=None):
        fake_gateway.keys.append(api_key)
        return fake_gateway

    app.dependency_overrides[deps.get_gateway_factory] = lambda: _gateway_factory
    app.dependency_overrides[deps.get_crm_client_factory] = lambda: FakeHubSpotClient
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
