#!/usr/bin/env python3
"""
Database reset script for the settlement backend.

This script drops all settlement tables and recreates them empty.
Use this to get a clean database state for local testing.
"""

import sys
import os

# Add backend/src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'backend', 'src'))

from sqlalchemy import inspect

from core.config import DATABASE_URL
from core.database import Base, engine, create_tables, drop_tables


def reset_database():
    """Reset the database by dropping all tables and recreating them."""

    print("Resetting settlement database...")
    print(f"Database URL: {DATABASE_URL}")

    # Confirm action (in case someone runs this accidentally)
    if not str(DATABASE_URL).startswith("sqlite"):
        print("ERROR: This script only works with a local SQLite database!")
        print(f"Current database: {DATABASE_URL}")
        return

    try:
        drop_tables()
        create_tables()

        table_names = inspect(engine).get_table_names()
        expected_tables = sorted(Base.metadata.tables.keys())

        print("Created tables:")
        for table in expected_tables:
            marker = "ok" if table in table_names else "missing"
            print(f"   [{marker}] {table}")

        if all(table in table_names for table in expected_tables):
            print("Database reset complete! All tables created successfully.")
        else:
            print("Warning: Some tables may be missing")

    except Exception as e:
        print(f"Error resetting database: {e}")
        raise


def show_usage():
    """Show usage information."""
    print("Settlement Database Reset Script")
    print("=" * 40)
    print()
    print("This script will:")
    print("1. Drop all existing tables")
    print("2. Recreate all tables with empty data")
    print()
    print("Usage:")
    print("  python reset_database.py")
    print()
    print("Note: Only works with a SQLite DATABASE_URL")


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] in ['--help', '-h']:
        show_usage()
    else:
        reset_database()
