from __future__ import annotations


class AutoBackupError(Exception):
    pass


class ConfigError(AutoBackupError, ValueError):
    """Raised when required configuration values are missing or invalid."""


class SourceNotFoundError(AutoBackupError):
    """Raised when the source root does not exist or is not a directory."""


class DirectoryCreateError(AutoBackupError):
    """Raised when a backup directory cannot be created."""


class StaleFileError(AutoBackupError):
    """Raised when a source file disappeared between discovery and decision."""


class WatcherError(AutoBackupError):
    pass
