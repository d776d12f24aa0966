"""CLI script to bootstrap the database with an admin account.
Usage: python scripts/create_admin.py --username admin --password secret [--branch "Main Branch"]
"""
import sys
import argparse
import pathlib
from typing import Optional
# Ensure `backend/` is on sys.path so `seatmanager` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from seatmanager.database import engine, create_db_and_tables
from seatmanager import services, repositories


def main(username: str, password: str, role: str = 'admin', branch: Optional[str] = None) -> int:
    """Create tables, then the user and (optionally) a first branch.

    An existing username is reported and left untouched.
    Returns a process exit code.
    """
    create_db_and_tables()
    with Session(engine) as session:
        if repositories.UserRepository(session).get_by_username(username):
            print(f'User {username} already exists')
        else:
            try:
                user = services.AuthService(session).register(username, password, role=role)
            except ValueError as e:
                print(f'Could not create user: {e}')
                return 1
            print(f'Created {user.role} user {user.username} (id {user.id})')
        if branch:
            svc = services.BranchService(session)
            try:
                created = svc.create(branch)
                print(f"Created branch {created['name']} (id {created['id']})")
            except ValueError as e:
                print(f'Branch not created: {e}')
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--username', required=True)
    parser.add_argument('--password', required=True)
    parser.add_argument('--role', default='admin', choices=['admin', 'staff', 'user'])
    parser.add_argument('--branch', help='Also create a branch with this name')
    args = parser.parse_args()
    sys.exit(main(args.username, args.password, role=args.role, branch=args.branch))
