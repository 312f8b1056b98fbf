"""Case portal backend: DMS synchronization and application status workflow."""

__version__ = "0.1.0"
