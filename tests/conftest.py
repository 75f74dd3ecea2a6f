import pytest

from observability import metrics

_ENV_VARS = (
    "DATABASE_URL",
    "DATABASE_URL_DEV",
    "VISITS_POLICY",
    "VISITS_ESTABLISHMENT_ID",
    "VISITS_EVALUATE_TIMEOUT_SECONDS",
    "VISITS_SEED_ANCHOR_DATE",
    "VISITS_SEED_INMATES",
    "VISITS_MAX_CONCURRENT_VISITS",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep sessions in memory and counters fresh for every test."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def session():
    from tests.fixtures import make_session

    return make_session()
