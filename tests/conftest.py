"""Common test fixtures for Guardian tests."""

from datetime import datetime, timedelta, timezone

import pytest

from guardian.core.config import Settings, get_settings
from guardian.memory.associations import AssociativeMemory
from guardian.memory.models import Insight, Review, ReviewStatus
from guardian.memory.sessions import SessionTracker
from guardian.memory.store import ReviewStore

GUARDIAN_ENV_VARS = [
    "GGA_DB_PATH",
    "GGA_LOG_LEVEL",
    "HEBBIAN_ENABLED",
    "HEBBIAN_LEARNING_RATE",
    "HEBBIAN_SESSION_BOOST",
    "HEBBIAN_MAX_SESSION_CONCEPTS",
    "RAG_DISCLOSURE_HIGH",
    "RAG_DISCLOSURE_MED",
    "RAG_MAX_TOKENS",
    "RAG_WEIGHT_LEXICAL",
    "RAG_WEIGHT_GRAPH",
    "RAG_WEIGHT_RECENCY",
    "RAG_RECENCY_HALF_LIFE_DAYS",
    "GGA_ENGRAM_ENABLED",
    "GGA_ENGRAM_OUTPUT_DIR",
]

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate every test from the caller's Guardian environment."""
    for name in GUARDIAN_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_settings(monkeypatch):
    """Build Settings from environment overrides, ignoring any .env file."""

    def _make(**env) -> Settings:
        for name, value in env.items():
            monkeypatch.setenv(name, str(value))
        return Settings(_env_file=None)

    return _make


@pytest.fixture
def store():
    """Create an in-memory store for testing."""
    return ReviewStore(":memory:")


@pytest.fixture
def memory(store):
    return AssociativeMemory(store, learning_rate=0.1)


@pytest.fixture
def tracker(store, memory):
    return SessionTracker(store, memory, session_boost=1.5, max_concepts=50)


def make_review(
    project: str = "test-proj",
    files: list[str] | None = None,
    result: str = "STATUS: PASSED\nLooks good",
    status: ReviewStatus = ReviewStatus.PASSED,
    created_at: datetime = NOW,
    diff: str | None = None,
) -> Review:
    files = files if files is not None else ["auth.ts"]
    return Review(
        created_at=created_at,
        project_path=f"/work/{project}",
        project_name=project,
        files=files,
        diff_content=diff if diff is not None else f"diff for {project} {files} {result}",
        result=result,
        status=status,
        provider="claude",
    )


@pytest.fixture
def review_factory():
    return make_review


@pytest.fixture
def seeded_store(store):
    """Store with a failed review carrying an insight and a legacy review without one."""
    failed = store.save_review(
        make_review(
            files=["auth.ts"],
            result="STATUS: FAILED\nSQL injection in query",
            status=ReviewStatus.FAILED,
        )
    )
    store.save_insight(
        Insight(
            review_id=failed.id,
            type="security",
            severity="critical",
            what="SQL injection in query",
            why="Bad input",
            learned="Use params",
            file_path="auth.ts:42",
        )
    )
    store.save_review(
        make_review(
            project="p",
            files=["utils.py"],
            result="STATUS: PASSED\nLooks good",
            status=ReviewStatus.PASSED,
            created_at=NOW - timedelta(days=1),
        )
    )
    return store
