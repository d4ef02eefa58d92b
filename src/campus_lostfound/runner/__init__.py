"""
CLI runner module.

Provides commands:
- init-db: Create the state database (and a default config if missing)
- auto-match: Score and persist matches for every approved item
- match-item: Score one lost or found item
- dispatch-emails: Drain due emails from the outbox
- status: Show claim, match and outbox counts
- serve: Run the JSON API
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
