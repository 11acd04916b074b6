from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect


EXPECTED_TABLES = {
    "affiliates",
    "affiliate_clicks",
    "affiliate_conversions",
    "affiliate_payouts",
    "affiliate_program_config",
    "closers",
    "appointments",
}


def _make_alembic_config(db_url: str) -> Config:
    backend_dir = Path(__file__).resolve().parents[1]
    alembic_ini = backend_dir / "alembic.ini"
    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(backend_dir / "alembic"))
    config.set_main_option("sqlalchemy.url", db_url)
    config.set_main_option("prepend_sys_path", str(backend_dir))
    return config


def _inspect(db_url: str):
    engine = create_engine(db_url, future=True)
    inspector = inspect(engine)
    tables = set(inspector.get_table_names())
    conversion_indexes = set()
    if "affiliate_conversions" in tables:
        conversion_indexes = {index["name"] for index in inspector.get_indexes("affiliate_conversions")}
    engine.dispose()
    return tables, conversion_indexes


def test_migration_upgrade_downgrade_cycle(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path / 'migration_test.db'}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    config = _make_alembic_config(db_url)

    command.upgrade(config, "head")
    tables, indexes = _inspect(db_url)
    assert EXPECTED_TABLES.issubset(tables)
    assert "ix_affiliate_conversions_commission_status" in indexes

    command.downgrade(config, "base")
    tables, _indexes = _inspect(db_url)
    assert not EXPECTED_TABLES & tables

    command.upgrade(config, "head")
    tables, _indexes = _inspect(db_url)
    assert EXPECTED_TABLES.issubset(tables)
