"""webrag: backfill scraped pages into embedded passages and search them."""

__version__ = "0.1.0"
