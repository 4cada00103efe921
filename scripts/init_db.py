from __future__ import annotations

import argparse
import logging
from typing import Optional

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from teelottery.config import PROJECT_ROOT, configure_logging
from teelottery.db.engine import make_engine
from teelottery.models import Base

logger = logging.getLogger("init_db")


def upgrade_db(target_revision: str = "head", database_url: Optional[str] = None) -> None:
    """Apply Alembic migrations up to the requested revision."""
    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    if database_url:
        alembic_cfg.attributes["database_url"] = database_url
    command.upgrade(alembic_cfg, target_revision)


def create_all(database_url: Optional[str] = None) -> None:
    """Create tables straight from the models, bypassing migrations."""
    Base.metadata.create_all(make_engine(database_url=database_url))


def lottery_tables(database_url: Optional[str] = None) -> list[str]:
    return sorted(inspect(make_engine(database_url=database_url)).get_table_names())


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create or upgrade the lottery database.")
    parser.add_argument("--database-url", help="override DB_URL")
    parser.add_argument("--revision", default="head", help="Alembic revision to upgrade to")
    parser.add_argument(
        "--create-all",
        action="store_true",
        help="create tables from the models instead of running migrations (scratch databases)",
    )
    args = parser.parse_args(argv)
    configure_logging()

    if args.create_all:
        create_all(args.database_url)
    else:
        upgrade_db(args.revision, args.database_url)

    tables = lottery_tables(args.database_url)
    missing = sorted(set(Base.metadata.tables) - set(tables))
    logger.info("Current tables: %s", ", ".join(tables))
    if missing:
        logger.error("Tables missing after initialisation: %s", ", ".join(missing))
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
