#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Script to create a Super Admin account in the database.
Usage: python3 create_admin.py
"""

import os
import sys
import getpass
from vault_store import create_user, get_user_by_email, init_db

# Import configuration
try:
    from config import DB_PATH
except ImportError:
    # Fallback to environment variable if config.py doesn't exist
    DB_PATH = "vault.db"

DB_PATH = os.environ.get("VAULT_DB", DB_PATH)

MIN_PASSWORD_LENGTH = 8


def main():
    print("=== Create Super Admin ===\n")

    # Roles are seeded by init_db, so run it on existing databases too
    if not os.path.exists(DB_PATH):
        print(f"Database {DB_PATH} does not exist. Creating...")
    init_db(DB_PATH)
    print(f"Using database: {DB_PATH}\n")

    email = input("Admin email: ").strip().lower()
    if not email:
        print("Error: Email cannot be empty")
        sys.exit(1)
    if get_user_by_email(DB_PATH, email):
        print(f"Error: An account already exists for {email}")
        sys.exit(1)

    first_name = input("First name: ").strip()
    last_name = input("Last name: ").strip()

    # Get password (hidden input)
    password = getpass.getpass("Admin password: ")
    if len(password) < MIN_PASSWORD_LENGTH:
        print(f"Error: Password must be at least {MIN_PASSWORD_LENGTH} characters")
        sys.exit(1)

    password_confirm = getpass.getpass("Confirm password: ")
    if password != password_confirm:
        print("Error: Passwords do not match")
        sys.exit(1)

    print("\nCreating Super Admin...")
    uid = create_user(DB_PATH, email, password, "Super Admin", first_name=first_name, last_name=last_name)

    if uid:
        print(f"✓ Super Admin created successfully: {email} (uid {uid})")
        print("\nYou can now sign in with these credentials.")
    else:
        print("✗ Failed to create Super Admin")
        sys.exit(1)


if __name__ == "__main__":
    main()
