"""partvault - remote part-storage backends for incremental backups."""

__version__ = "0.1.0"
