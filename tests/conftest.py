"""Shared fixtures: a fresh store per test and isolated settings."""

from pathlib import Path

import pytest
import pytest_asyncio

from swarm_health.config import HealthConfig
from swarm_health.db.health import HealthDB


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def config(tmp_path: Path, project_root: Path) -> HealthConfig:
    """Settings that ignore the environment and any .env file."""
    return HealthConfig(
        _env_file=None,
        db_path=tmp_path / "health.db",
        project_root=project_root,
        anthropic_api_key=None,
        openai_api_key=None,
        twitter_bearer_token=None,
        telegram_bot_token=None,
        telegram_chat_id=None,
    )


@pytest_asyncio.fixture
async def db(config: HealthConfig):
    async with HealthDB(config.db_path) as health_db:
        yield health_db


@pytest.fixture
def write(project_root: Path):
    """Create a file under the project root, including parent directories."""

    def _write(relative: str, content: str) -> Path:
        path = project_root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write
