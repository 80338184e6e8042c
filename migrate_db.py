#!/usr/bin/env python
"""
Schema migrations for the subscriber sync store

Applies the alembic revisions under alembic/versions to DATABASE_URL.

    python migrate_db.py            # upgrade to head
    python migrate_db.py upgrade
    python migrate_db.py downgrade [revision]
    python migrate_db.py current
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent / "src"))

from alembic import command
from alembic.config import Config

ALEMBIC_INI = str(Path(__file__).parent / "alembic.ini")

USAGE = "Usage: python migrate_db.py [upgrade | downgrade [revision] | current]"


def _alembic_config() -> Config:
    return Config(ALEMBIC_INI)


def upgrade_db():
    """Create or upgrade the connection, subscriber, sync history and billing tables"""
    print("Upgrading subscriber sync schema to head...")
    command.upgrade(_alembic_config(), "head")
    print("Subscriber sync schema is up to date")


def downgrade_db(revision: str = "-1"):
    """Roll the schema back one revision, or to `revision`"""
    print(f"Rolling subscriber sync schema back to {revision}...")
    command.downgrade(_alembic_config(), revision)
    print("Schema rollback finished")


def show_current_revision():
    """Print the applied revision next to the newest one available"""
    from alembic.runtime.migration import MigrationContext
    from alembic.script import ScriptDirectory
    from subscriber_sync.db.engine import engine

    head_rev = ScriptDirectory.from_config(_alembic_config()).get_current_head()
    with engine.connect() as connection:
        current_rev = MigrationContext.configure(connection).get_current_revision()

    print(f"Applied revision: {current_rev or 'none (schema not created yet)'}")
    print(f"Head revision:    {head_rev}")


if __name__ == "__main__":
    action = sys.argv[1] if len(sys.argv) > 1 else "upgrade"
    if action == "upgrade":
        upgrade_db()
    elif action == "downgrade":
        downgrade_db(sys.argv[2] if len(sys.argv) > 2 else "-1")
    elif action == "current":
        show_current_revision()
    else:
        print(USAGE)
        sys.exit(1)
