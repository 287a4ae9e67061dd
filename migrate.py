"""
Apply database migrations without starting the web server.

Usage:
  python migrate.py

Runs the Alembic revisions in migrations/ against DATABASE_URL (PostgreSQL).
"""

import os
import sys

from alembic import command
from alembic.config import Config
from dotenv import load_dotenv


def build_config():
    cfg = Config()
    cfg.set_main_option('script_location', os.path.join(os.path.dirname(os.path.abspath(__file__)), 'migrations'))
    return cfg


def main():
    load_dotenv()
    try:
        print("Applying database migrations...")
        command.upgrade(build_config(), 'head')
        print("Migrations completed successfully.")
    except Exception as e:
        print(f"Migration failed: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
