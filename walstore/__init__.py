"""walstore — HTTP service over a pooled, self-migrating SQLite database."""

__version__ = "1.0.0"
