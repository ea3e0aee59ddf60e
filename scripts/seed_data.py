"""One-time bootstrap: create tables, the empty rate grid and an Admin user.

Usage:
  python scripts/seed_data.py --username admin --email admin@example.com --password secret
Or provide via env: ADMIN_USERNAME, ADMIN_EMAIL, ADMIN_PASSWORD

Safe to run again: existing rates and users are left alone.
"""
import argparse
import os
from getpass import getpass

from jewel_core.app.config import configure_logging
from jewel_core.app.db import SessionLocal, create_db_and_tables
from jewel_core.app.seed import seed_admin, seed_rate_grid


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument('--username')
    parser.add_argument('--email')
    parser.add_argument('--password')
    parser.add_argument('--skip-admin', action='store_true', help='only seed the rate grid')
    args = parser.parse_args()

    configure_logging()
    create_db_and_tables()
    db = SessionLocal()
    try:
        created = seed_rate_grid(db)
        print('Rate pairs created:', created)

        if not args.skip_admin:
            username = args.username or os.getenv('ADMIN_USERNAME') or input('Username: ').strip()
            email = args.email or os.getenv('ADMIN_EMAIL') or input('Email: ').strip()
            password = args.password or os.getenv('ADMIN_PASSWORD') or getpass('Password: ')
            user = seed_admin(db, username, email, password)
            print('Created Admin user:' if user else 'User already exists:', username)

        db.commit()
    finally:
        db.close()


if __name__ == '__main__':
    main()
