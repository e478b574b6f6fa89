import pytest

from dayplan.core.settings import Settings
from dayplan.db.session import DatabaseManager, normalize_database_url


@pytest.mark.parametrize("url, expected", [
    ("postgres://u:p@db:5432/app", "postgresql+asyncpg://u:p@db:5432/app"),
    ("postgresql://u:p@db:5432/app", "postgresql+asyncpg://u:p@db:5432/app"),
    ("sqlite:///./local.db", "sqlite+aiosqlite:///./local.db"),
    ("postgresql+asyncpg://u:p@db/app", "postgresql+asyncpg://u:p@db/app"),
])
def test_normalize_database_url(url, expected):
    assert normalize_database_url(url) == expected


def test_invalid_url_is_rejected():
    with pytest.raises(ValueError):
        DatabaseManager(Settings(DB_URL="not a url"))._prepare_database_url()
    with pytest.raises(ValueError):
        DatabaseManager(Settings(DB_URL=""))._prepare_database_url()


async def test_sqlite_manager_lifecycle(tmp_path):
    manager = DatabaseManager(Settings(DB_URL=f"sqlite:///{tmp_path / 'db.sqlite'}"))
    await manager.initialize()
    try:
        await manager.init_db()
        health = await manager.health_check()
        assert health["status"] == "healthy"
        assert health["checks"]["connectivity"]["status"] == "pass"
        assert manager.get_connection_stats()["total_connections"] >= 1
    finally:
        await manager.close()
    assert manager.engine is None
