"""Campus portal backend: access guard and backup/restore."""

__version__ = "1.0.0"
