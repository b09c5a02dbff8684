"""
Shared pytest fixtures for the Vulnerability Intelligence Pipeline
"""
from unittest.mock import Mock

import pytest

from vip.core.cache_gate import CacheGate
from vip.core.collaborators import LoggingNotificationEvaluator
from vip.core.cwe_resolver import CweResolver
from vip.core.merge_engine import MergeEngine
from vip.core.models import Component
from vip.core.ossindex_client import OssIndexAnalyzer, OssIndexSettings
from vip.database import SqlVulnerabilityStore, create_db_engine, create_session_factory, init_db
from vip.monitoring.metrics import metrics_registry
from vip.utils.config import Config, set_config
from vip.utils.error_handler import get_error_handler
from vip.utils.error_recovery import RetryConfig
from tests.fixtures.mock_data import OSSINDEX_HOST


@pytest.fixture(autouse=True)
def reset_state(tmp_path, monkeypatch):
    """Fresh default configuration, zeroed metrics and no recorded errors"""
    monkeypatch.delenv("VIP_CONFIG", raising=False)
    monkeypatch.delenv("OSSINDEX_API_TOKEN", raising=False)
    set_config(Config(str(tmp_path / "missing-vip.json")))
    metrics_registry.reset()
    get_error_handler().clear_errors()
    yield
    get_error_handler().clear_errors()


@pytest.fixture
def store():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    return SqlVulnerabilityStore(create_session_factory(engine=engine))


@pytest.fixture
def cwe_resolver():
    return CweResolver()


@pytest.fixture
def notifier():
    return LoggingNotificationEvaluator()


@pytest.fixture
def cache_gate(store, notifier):
    return CacheGate(store, notifier)


@pytest.fixture
def merge_engine(store, cache_gate, cwe_resolver, notifier):
    return MergeEngine(store, cache_gate, cwe_resolver, notifier, target_host=OSSINDEX_HOST)


@pytest.fixture
def http_session():
    """requests.Session stand-in; set ``post.return_value`` or ``post.side_effect``"""
    return Mock()


@pytest.fixture
def analyzer_factory(cache_gate, merge_engine, http_session):
    def factory(request_max_purl=128, max_attempts=3, **settings):
        settings.setdefault("base_url", OSSINDEX_HOST)
        analyzer = OssIndexAnalyzer(
            OssIndexSettings(request_max_purl=request_max_purl, **settings),
            cache_gate, merge_engine,
            RetryConfig(max_attempts=max_attempts, initial_delay=0.0),
            session=http_session,
        )
        analyzer.executor._sleep = lambda seconds: None
        return analyzer
    return factory


@pytest.fixture
def make_component(store):
    """Build a component from a dict and register it in the store"""
    def factory(uuid, purl=None, **fields):
        component = Component.from_dict(dict(uuid=uuid, purl=purl, **fields))
        store.save_component(component)
        return component
    return factory
