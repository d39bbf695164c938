import pytest

from questforge_ai.execution.persistence import PersistenceService
from questforge_ai.execution.repos.sql import build_sql_repos, create_all, create_engine, create_sessionmaker


@pytest.fixture
async def file_engine(tmp_path):
    """A file-backed SQLite database, so every session sees committed data only."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'questforge.db'}")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def repos(file_engine):
    return build_sql_repos(session_factory=create_sessionmaker(file_engine))


@pytest.fixture
def persistence(repos) -> PersistenceService:
    return PersistenceService.from_bundle(repos, max_content_length=50)
