"""Storage backends, file locking and hooks for resumable (tus) uploads."""

__version__ = "0.1.0"

__all__ = ["upload", "filestore", "filelocker", "azurestore", "gcsstore", "hooks"]