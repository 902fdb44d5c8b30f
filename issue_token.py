# issue_token.py
import argparse
import os
import sys
from datetime import timedelta

from dotenv import load_dotenv

project_root = os.path.dirname(os.path.abspath(__file__))
# Muat .env sebelum config di-import (SECRET_KEY wajib ada)
load_dotenv(os.path.join(project_root, ".env"))

try:
    from custody.core.config import ROLE_TIERS
    from custody.core.permissions import tier_for_role
    from custody.core.security import create_access_token
except (ImportError, ValueError) as e:
    print(f"Error importing application modules: {e}")
    print("Pastikan Anda menjalankan skrip dari root direktori proyek dan venv aktif.")
    sys.exit(1)


def issue_token(subject: str, role: str, name: str = None, minutes: int = None) -> str:
    """Mint a bearer token the way the upstream identity provider would. Development only."""
    tier = tier_for_role(role, ROLE_TIERS)
    if tier is None:
        raise ValueError(f"Role '{role}' is not mapped in ROLE_TIERS ({ROLE_TIERS}).")
    claims = {"sub": subject, "role": role}
    if name:
        claims["name"] = name
    expires = timedelta(minutes=minutes) if minutes else None
    return create_access_token(claims, expires_delta=expires)


def main() -> None:
    parser = argparse.ArgumentParser(description="Issue a development JWT for the custody API.")
    parser.add_argument("--sub", help="Subject (actor id)")
    parser.add_argument("--role", help="External role name, e.g. admin or user")
    parser.add_argument("--name", help="Display name (optional)")
    parser.add_argument("--minutes", type=int, help="Lifetime in minutes (default ACCESS_TOKEN_EXPIRE_MINUTES)")
    args = parser.parse_args()

    print("--- Issue Development Token ---")
    subject = args.sub
    while not subject:
        subject = input("Enter subject (actor id): ").strip()
        if not subject:
            print("Subject cannot be empty.")
    role = args.role or input(f"Enter role {sorted(ROLE_TIERS)}: ").strip()

    try:
        token = issue_token(subject, role, args.name, args.minutes)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    print(f"Token for '{subject}' ({role} -> {tier_for_role(role, ROLE_TIERS).value}):")
    print(token)


if __name__ == "__main__":
    main()
