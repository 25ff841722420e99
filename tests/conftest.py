"""Shared fixtures for LifeGit tests.

Tests run against real components: the in-memory store, the real
DeepSeekClient talking to an httpx.MockTransport, and PostgreSQL when it
is reachable. Tests requiring external services use skip markers.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Union

import httpx
import pytest
from dotenv import load_dotenv

# Load .env from project root so DATABASE_URL, API keys, etc. are available
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

from lifegit.commits.ledger import CommitLedger
from lifegit.core.config import (
    AppConfig,
    DatabaseConfig,
    LLMConfig,
    RetryConfig,
    StorageConfig,
    load_config,
)
from lifegit.core.events import EventBus
from lifegit.core.factory import ComponentBundle, ComponentFactory
from lifegit.db.memory import InMemoryStore
from lifegit.llm.client import DeepSeekClient


# ---------------------------------------------------------------------------
# Service availability checks
# ---------------------------------------------------------------------------

def _get_db_config() -> DatabaseConfig:
    """Build a DatabaseConfig from environment or defaults."""
    db_url = os.getenv("DATABASE_URL")
    if db_url and db_url.startswith("postgresql://"):
        from urllib.parse import urlparse
        parsed = urlparse(db_url)
        return DatabaseConfig(
            host=parsed.hostname or "localhost",
            port=parsed.port or 5432,
            dbname=(parsed.path[1:] if parsed.path and len(parsed.path) > 1 else "lifegit"),
            user=parsed.username or "lifegit",
            password=parsed.password or "lifegit",
        )
    return DatabaseConfig()


def _postgres_available() -> bool:
    """Check if PostgreSQL is reachable."""
    try:
        import psycopg
        conn = psycopg.connect(_get_db_config().connection_string, connect_timeout=5)
        conn.close()
        return True
    except Exception:
        return False


def _deepseek_key_set() -> bool:
    return bool(os.getenv("DEEPSEEK_API_KEY"))


requires_postgres = pytest.mark.skipif(
    not _postgres_available(),
    reason="PostgreSQL not available",
)

requires_api_key = pytest.mark.skipif(
    not _deepseek_key_set(),
    reason="DEEPSEEK_API_KEY not set",
)


# ---------------------------------------------------------------------------
# Completion server
# ---------------------------------------------------------------------------

def completion_body(content: str, model: str = "deepseek-reasoner", tokens: int = 128) -> dict:
    """A valid chat completion response body."""
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "model": model,
        "usage": {"total_tokens": tokens},
    }


def plan_json(*titles: str, total_duration: str = "3 weeks", minutes: int = 60) -> str:
    """Plan payload in the shape the generator asks the model for."""
    titles = titles or ("Read the official tutorial", "Build a small project", "Review and refactor")
    return json.dumps({
        "totalDuration": total_duration,
        "tasks": [
            {
                "title": title,
                "description": f"{title} step by step",
                "timeScope": "weekly",
                "estimatedDuration": minutes,
                "orderIndex": index,
                "executionTips": "Keep notes",
            }
            for index, title in enumerate(titles, start=1)
        ],
    })


Reply = Union[httpx.Response, Exception]


class CompletionServer:
    """Serves queued replies to a real DeepSeekClient via httpx.MockTransport."""

    def __init__(self) -> None:
        self.replies: list[Reply] = []
        self.requests: list[dict[str, Any]] = []

    def reply(self, content: str) -> "CompletionServer":
        self.replies.append(httpx.Response(200, json=completion_body(content)))
        return self

    def fail(self, status: int, message: str = "upstream failure") -> "CompletionServer":
        self.replies.append(httpx.Response(status, json={"error": {"message": message}}))
        return self

    def drop(self) -> "CompletionServer":
        self.replies.append(httpx.ConnectError("Connection refused"))
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        if not self.replies:
            return httpx.Response(503, json={"error": {"message": "no reply queued"}})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def client(self, api_key: str = "test-key-123") -> DeepSeekClient:
        client = DeepSeekClient(
            config=LLMConfig(base_url="https://llm.test/v1", timeout_seconds=5),
            api_key=api_key,
        )
        client._client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return client


class RecordingSleep:
    """Async sleep that records the requested delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config_dir() -> Path:
    return Path(__file__).parent.parent / "config"


@pytest.fixture
def app_config(config_dir: Path) -> AppConfig:
    return load_config(config_dir=config_dir, env="test")


@pytest.fixture
def memory_config() -> AppConfig:
    return AppConfig(storage=StorageConfig(backend="memory"), retry=RetryConfig())


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def ledger(store: InMemoryStore, events: EventBus) -> CommitLedger:
    return CommitLedger(store, events=events)


@pytest.fixture
def server() -> CompletionServer:
    return CompletionServer()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def bundle(memory_config: AppConfig, server: CompletionServer, sleeper: RecordingSleep) -> ComponentBundle:
    """Fully wired in-memory bundle whose LLM is the CompletionServer."""
    return ComponentFactory.create(
        config=memory_config,
        llm_client=server.client(),
        sleep=sleeper,
    )


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def db_config() -> DatabaseConfig:
    return _get_db_config()


@pytest.fixture
def db_engine(db_config):
    """Real PostgreSQL engine: creates schema, yields, cleans up."""
    from lifegit.db.engine import DatabaseEngine
    engine = DatabaseEngine(db_config)
    engine.initialize_schema()
    engine.execute("TRUNCATE branches CASCADE")
    yield engine
    engine.execute("TRUNCATE branches CASCADE")
    engine.close()


@pytest.fixture
def repository(db_engine):
    from lifegit.db.repository import Repository
    return Repository(db_engine)
