"""Multi-vendor chat prompt assembly with token budgeting."""

__version__ = "1.0.0"
