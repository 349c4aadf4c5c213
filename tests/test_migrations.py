from argparse import Namespace
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from shop_erp_core.models import Base

ALEMBIC_DIR = Path(__file__).resolve().parents[1] / "apps" / "api" / "alembic"


def test_upgrade_creates_every_table(tmp_path):
    db = tmp_path / "migrated.db"
    cfg = Config(cmd_opts=Namespace(x=[f"db_url=sqlite+aiosqlite:///{db}"]))
    cfg.set_main_option("script_location", str(ALEMBIC_DIR))

    command.upgrade(cfg, "head")

    engine = create_engine(f"sqlite:///{db}")
    try:
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    assert set(Base.metadata.tables) <= tables
    assert "alembic_version" in tables
