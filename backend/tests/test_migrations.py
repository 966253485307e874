# tests/test_migrations.py
"""
Tests for the Alembic migrations against a file-backed SQLite database.
"""

from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from modelfolio.models import Base

ALEMBIC_DIR = Path(__file__).resolve().parent.parent / "alembic"


@pytest.fixture
def alembic_config(tmp_path) -> Config:
    config = Config()
    config.set_main_option("script_location", str(ALEMBIC_DIR))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{tmp_path / 'migrations.db'}")
    return config


class TestMigrations:
    """upgrade / downgrade"""

    def test_upgrade_matches_models(self, alembic_config):
        """Every model table and column exists after upgrading to head."""
        command.upgrade(alembic_config, "head")

        inspector = inspect(create_engine(alembic_config.get_main_option("sqlalchemy.url")))
        assert set(Base.metadata.tables) <= set(inspector.get_table_names())
        for name, table in Base.metadata.tables.items():
            columns = {c["name"] for c in inspector.get_columns(name)}
            assert columns == {c.name for c in table.columns}, name

    def test_downgrade_removes_tables(self, alembic_config):
        """Downgrading to base leaves only Alembic's version table."""
        command.upgrade(alembic_config, "head")
        command.downgrade(alembic_config, "base")

        inspector = inspect(create_engine(alembic_config.get_main_option("sqlalchemy.url")))
        assert set(inspector.get_table_names()) <= {"alembic_version"}
