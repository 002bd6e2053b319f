from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from poolsync.config import settings


POOL_SYNC_TABLES = {
    "users",
    "user_nft_holdings",
    "blockchain_events",
    "pools",
    "tier_commitments",
    "point_transactions",
    "user_points",
    "referral_grants",
    "blockchain_pool_sync_runs",
    "blockchain_indexer_state",
}


def test_initial_migration_upgrade_and_downgrade(tmp_path):
    repo_root = Path(__file__).resolve().parents[1]
    db_path = tmp_path / "pool_sync_migration.db"
    async_db_url = f"sqlite+aiosqlite:///{db_path}"
    sync_db_url = f"sqlite:///{db_path}"

    alembic_cfg = Config(str(repo_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(repo_root / "alembic"))

    original_db_url = settings.database_url
    settings.database_url = async_db_url

    engine = create_engine(sync_db_url)
    try:
        command.upgrade(alembic_cfg, "head")

        inspector = inspect(engine)
        assert POOL_SYNC_TABLES <= set(inspector.get_table_names())
        unique_names = {
            constraint["name"] for constraint in inspector.get_unique_constraints("point_transactions")
        }
        assert "uq_point_transactions_user_action_tx" in unique_names
        event_columns = {column["name"] for column in inspector.get_columns("blockchain_events")}
        assert {"retryable", "attempts"} <= event_columns

        command.downgrade(alembic_cfg, "base")
        inspector = inspect(engine)
        assert not POOL_SYNC_TABLES & set(inspector.get_table_names())
    finally:
        engine.dispose()
        settings.database_url = original_db_url
