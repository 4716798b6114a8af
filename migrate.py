"""
Apply the school portal schema migrations without starting the web server.

Usage:
  python migrate.py              # upgrade to head
  python migrate.py 001_initial  # upgrade to a given revision

Startup DDL and the admin bootstrap are switched off so the schema comes
only from migrations/versions.
"""

import os
import sys

MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'migrations')


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    revision = argv[0] if argv else 'head'

    os.environ['RUN_STARTUP_DDL'] = '0'
    os.environ['RUN_STARTUP_BOOTSTRAP'] = '0'

    import school_portal
    from flask_migrate import upgrade

    print(f"Upgrading school portal schema to {revision}...")
    try:
        with school_portal.app.app_context():
            upgrade(directory=MIGRATIONS_DIR, revision=revision)
    except Exception as e:
        print(f"Migration to {revision} failed: {e}", file=sys.stderr)
        return 1
    print("Schema is up to date.")
    return 0


if __name__ == '__main__':
    sys.exit(main())
