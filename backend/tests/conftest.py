import os
import tempfile

import pytest

# The app reads settings at import time; give it a key and keep its store out of the repo.
os.environ.setdefault('OPENROUTER_API_KEY', 'test-key')
os.environ.setdefault('STORE_DB_PATH', os.path.join(tempfile.mkdtemp(prefix='amicooked-'), 'app.db'))

from amicooked.config import Settings  # noqa: E402
from amicooked.services.agent import AgentMemoryStore, SessionManager  # noqa: E402
from amicooked.services.usage import build_usage_service  # noqa: E402
from amicooked.storage.documents import DocumentStore  # noqa: E402
from fakes import FakeAIClient  # noqa: E402


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        OPENROUTER_API_KEY='test-key',
        STORE_DB_PATH=str(tmp_path / 'amicooked.db'),
        AI_RETRY_BACKOFF_SECONDS=0,
        STORE_RETRY_BACKOFF_SECONDS=0,
        CACHE_BACKEND='memory',
    )


@pytest.fixture
def documents(settings) -> DocumentStore:
    return DocumentStore(settings.store_db_path)


@pytest.fixture
def usage_service(settings, documents):
    return build_usage_service(settings, documents=documents)


@pytest.fixture
def ai_client() -> FakeAIClient:
    return FakeAIClient()


@pytest.fixture
def sessions(documents, ai_client, settings) -> SessionManager:
    return SessionManager(store=AgentMemoryStore(documents), client=ai_client, settings=settings)
