"""Compare the lottery models against a live database and report differences.

Exit codes: 0 no drift, 1 drift found, 2 the comparison could not run.
"""

from __future__ import annotations

import argparse
import logging

from alembic.autogenerate import api as ag_api
from alembic.runtime.migration import MigrationContext
from sqlalchemy.exc import SQLAlchemyError

from teelottery.config import configure_logging
from teelottery.db.engine import make_engine
from teelottery.models import Base

logger = logging.getLogger("check_schema_drift")


def _describe_ops(ops, indent: int = 0) -> list[str]:
    lines: list[str] = []
    prefix = "  " * indent
    for op in ops:
        lines.append(f"{prefix}- {op}")
        sub_ops = getattr(op, "ops", None)
        if sub_ops:
            lines.extend(_describe_ops(sub_ops, indent + 1))
    return lines


def check(database_url=None) -> int:
    engine = make_engine(database_url=database_url)
    url_display = engine.url.render_as_string(hide_password=True)
    try:
        with engine.connect() as connection:
            context = MigrationContext.configure(
                connection=connection,
                opts={
                    "compare_type": True,
                    "compare_server_default": True,
                    "render_as_batch": connection.dialect.name == "sqlite",
                },
            )
            upgrade_ops = ag_api.produce_migrations(context, Base.metadata).upgrade_ops
    except SQLAlchemyError as exc:
        logger.error("Schema drift check could not connect to %s: %s", url_display, exc)
        return 2

    if upgrade_ops is None:
        logger.error("Schema drift check for %s produced no upgrade ops", url_display)
        return 2
    if upgrade_ops.is_empty():
        logger.info("Schema drift check: OK (no differences) for %s", url_display)
        return 0
    logger.warning("Schema drift check: differences detected for %s", url_display)
    for line in _describe_ops(upgrade_ops.ops or []):
        logger.warning("%s", line)
    return 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--database-url", help="override DB_URL for this check")
    args = parser.parse_args(argv)
    configure_logging()
    return check(args.database_url)


if __name__ == "__main__":
    raise SystemExit(main())
