"""The Alembic history builds the same tables the ORM models declare."""

from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

import signflow.domain  # noqa: F401
from signflow.db.base import Base

ROOT = Path(__file__).resolve().parents[1]


def test_upgrade_head_creates_model_tables(tmp_path):
    db_path = tmp_path / "migrated.db"
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    cfg.set_main_option("sqlalchemy.url", f"sqlite+aiosqlite:///{db_path}")
    cfg.attributes["configure_logger"] = False

    command.upgrade(cfg, "head")

    engine = create_engine(f"sqlite:///{db_path}")
    try:
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        assert set(Base.metadata.tables) <= tables
        for name, table in Base.metadata.tables.items():
            columns = {c["name"] for c in inspector.get_columns(name)}
            assert columns == {c.name for c in table.columns}, name
        uniques = {u["name"] for u in inspector.get_unique_constraints("recipients")}
        assert "uq_recipients_workflow_order" in uniques
    finally:
        engine.dispose()
