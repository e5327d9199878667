"""Pytest configuration and fixtures for all tests."""

import pytest
from prometheus_client import CollectorRegistry

from src.featureflow.catalog import RepositoryCatalog
from src.featureflow.metrics import WorkflowMetrics
from src.featureflow.state.store import SessionStore
from src.featureflow.workflow.machine import FeatureRequestWorkflow
from tests.fakes import (
    INITIATOR_ID,
    InMemoryPersistenceGateway,
    RecordingConversationClient,
    ScriptedAgent,
)


@pytest.fixture
def repo_dirs(tmp_path):
    gisbot = tmp_path / "gisbot"
    gisbot.mkdir()
    gembot = tmp_path / "GemBot"
    gembot.mkdir()
    return {"gisbot": str(gisbot), "gembot": str(gembot)}


@pytest.fixture
def catalog(repo_dirs):
    return RepositoryCatalog(repo_dirs)


@pytest.fixture
def gateway():
    return InMemoryPersistenceGateway()


@pytest.fixture
def store(gateway):
    return SessionStore(gateway)


@pytest.fixture
def chat():
    return RecordingConversationClient(usernames={INITIATOR_ID: "ada"})


@pytest.fixture
def agent():
    return ScriptedAgent()


@pytest.fixture
def metrics():
    return WorkflowMetrics(registry=CollectorRegistry())


@pytest.fixture
def workflow(store, catalog, agent, chat, metrics):
    return FeatureRequestWorkflow(
        store=store,
        catalog=catalog,
        agent=agent,
        chat=chat,
        metrics=metrics,
    )
