import logging
import sys

from db import drop_db, get_engine, init_db

logger = logging.getLogger(__name__)


def reset_db():
    """
    Drop and recreate the snapshot tables.
    DESTRUCTIVE. Intended for dev/test only.
    """
    engine = get_engine()
    drop_db(engine)
    init_db(engine)
    logger.info("database reset complete")


def run_migrations():
    init_db(get_engine())
    logger.info("snapshot tables created")


def main(argv=None):
    """
    Usage:
      python migrate.py        # create tables
      python migrate.py reset  # DROP + recreate tables
    """
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        run_migrations()
    elif argv[0] == "reset":
        reset_db()
    else:
        raise SystemExit(f"unknown command: {argv[0]}")


if __name__ == "__main__":
    main()
