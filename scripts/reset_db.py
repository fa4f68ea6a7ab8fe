#!/usr/bin/env python3
"""Script to reset the transcript database.

Usage:
  python scripts/reset_db.py [--force] [--database-url URL]
"""

import argparse
import os
import sys
from pathlib import Path

# Add project root to sys.path so we can import the kumulus package
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

from kumulus.core import database


def reset_transcripts(force: bool, database_url: str | None = None) -> bool:
    """Drop and recreate the chat_turns table. Returns True if it was reset."""
    print("Resetting transcript database...")
    if not force:
        confirm = input("  This will delete all chat history. Continue? [y/N]: ")
        if confirm.lower() != 'y':
            print("  Skipping reset.")
            return False

    url = database_url or os.environ.get("DATABASE_URL", "sqlite:///data/kumulus.sqlite")
    database.init_db(url)

    engine = database.get_engine()
    database.Base.metadata.drop_all(engine)
    database.Base.metadata.create_all(engine)
    print("  chat_turns dropped and recreated.")
    return True


def main():
    parser = argparse.ArgumentParser(description="Reset the Kumulus transcript database.")
    parser.add_argument("--force", "-f", action="store_true", help="Skip confirmation prompt")
    parser.add_argument("--database-url", help="Override DATABASE_URL")
    args = parser.parse_args()

    load_dotenv(project_root / ".env")
    reset_transcripts(args.force, args.database_url)
    print("Done!")


if __name__ == "__main__":
    main()
